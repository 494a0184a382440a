"""Robust geometric estimation for indoor positioning.

This package estimates positions and radio source parameters from noisy
readings taken at known positions while rejecting outliers:
- estimators: Linear and nonlinear least squares solvers
- rf: Measurement models, lateration and RSSI radio source solvers
- robust: Robust estimator engine (RANSAC, MSAC, LMedS, PROSAC, PROMedS)
- positioning: Robust lateration and radio source front ends
"""

__version__ = "0.1.0"
