"""
Robust positioning examples.

Examples:
    - Robust lateration with NLOS anchors (2D and 3D)
    - Robust radio source position, power and path-loss estimation
"""
