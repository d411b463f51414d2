DEFAULTS = {
    "output_dir": "./output",
    # LAS point lists are binned onto this cell size (input units) before meshing.
    "las_cellsize": 1.0,
    "las_method": "mean",
    # Flat base plane of the printable solid.
    "base_z": -10.0,
    # Height-field hosts subdivide recursively, so sizes are 2^n + 1.
    "heightfield_size": 1025,
    "mesh_format": "obj",
    "workers": 1,
}
