"""
Robust Lateration Example.

This script demonstrates positioning from ranges when some anchors are
affected by non-line-of-sight (NLOS) propagation, comparing a plain
nonlinear least-squares fix with the robust estimators.

Demonstrates:
    - Least-squares lateration biased by NLOS ranges
    - RANSAC, MSAC, LMedS, PROSAC and PROMedS outlier rejection
    - Quality scores for the progressive methods
    - 3D robust lateration
    - Progress notifications through a listener
    - Receiver positioning from the RSSI of known access points

Usage:
    python examples/example_robust_lateration.py
"""

import matplotlib.pyplot as plt
import numpy as np

from robust_positioning.positioning import (
    RobustLaterationSolver,
    RobustRssiPositionEstimator,
    robust_lateration_2d,
    robust_lateration_3d,
)
from robust_positioning.rf import NonLinearLaterationSolver, toa_range
from robust_positioning.rf.measurement_models import rssi_from_distance
from robust_positioning.robust import RobustEstimatorListener


def simulate_room(num_anchors=12, nlos_indices=(1, 5, 9), noise_std=0.05, seed=42):
    """Anchors in a 20 m x 20 m room with positive NLOS range biases."""
    rng = np.random.default_rng(seed)
    anchors = rng.uniform(0.0, 20.0, size=(num_anchors, 2))
    true_pos = np.array([8.0, 11.0])

    ranges = np.array([toa_range(anchor, true_pos) for anchor in anchors])
    ranges += noise_std * rng.normal(size=num_anchors)
    nlos_bias = rng.uniform(3.0, 8.0, size=len(nlos_indices))
    ranges[list(nlos_indices)] += nlos_bias

    # NLOS anchors typically report lower signal quality
    quality = np.ones(num_anchors)
    quality[list(nlos_indices)] = 0.2
    return anchors, true_pos, ranges, quality, np.array(nlos_indices)


def example_least_squares_vs_robust():
    """Example 1: NLOS ranges bias least squares but not robust methods."""
    print("=" * 70)
    print("Example 1: Least Squares vs Robust Lateration with NLOS Anchors")
    print("=" * 70)

    anchors, true_pos, ranges, quality, nlos = simulate_room()
    print(f"\nAnchors: {len(anchors)}, NLOS anchors: {nlos.tolist()}")
    print(f"True position: {true_pos}")

    ls = NonLinearLaterationSolver(anchors).solve(ranges)
    ls_error = np.linalg.norm(ls.x - true_pos)
    print(f"\nLeast squares (all anchors): {ls.x}, error {ls_error:.3f} m")

    results = {}
    print(f"\n{'Method':<10} {'Position':<24} {'Error (m)':<10} {'Iter':<6} {'Outliers'}")
    print("-" * 70)
    for method in ["ransac", "msac", "lmeds", "prosac", "promeds"]:
        position, info = robust_lateration_2d(
            anchors,
            ranges,
            method=method,
            threshold=0.3,
            quality_scores=quality,
            seed=0,
        )
        error = np.linalg.norm(position - true_pos)
        outliers = np.flatnonzero(~info["inliers"]).tolist()
        results[method] = (position, info)
        print(
            f"{method:<10} {np.array2string(position, precision=3):<24} "
            f"{error:<10.3f} {info['iterations']:<6} {outliers}"
        )

    return anchors, true_pos, nlos, ls.x, results


def example_3d_lateration():
    """Example 2: Robust 3D lateration with one corrupted range."""
    print("\n" + "=" * 70)
    print("Example 2: Robust 3D Lateration")
    print("=" * 70)

    anchors = np.array(
        [
            [0, 0, 0],
            [10, 0, 0],
            [0, 10, 0],
            [0, 0, 3],
            [10, 10, 3],
            [10, 0, 1.5],
            [0, 10, 2.5],
        ],
        dtype=float,
    )
    true_pos = np.array([4.0, 6.0, 1.2])
    ranges = np.array([toa_range(anchor, true_pos) for anchor in anchors])
    ranges[4] += 5.0

    print(f"\nTrue position: {true_pos}")
    print("Range to anchor 4 corrupted by +5 m")

    position, info = robust_lateration_3d(anchors, ranges, method="msac", threshold=0.1, seed=0)

    print(f"\nEstimated position: {position}")
    print(f"Position error: {np.linalg.norm(position - true_pos):.2e} m")
    print(f"Inliers: {info['inliers'].astype(int)}")
    print(f"Position std (m): {np.sqrt(np.diag(info['covariance']))}")


class ProgressPrinter(RobustEstimatorListener):
    """Prints the progress of a robust run."""

    def on_estimate_start(self, estimator):
        print(f"  start ({estimator.method.value})")

    def on_estimate_progress_change(self, estimator, progress):
        print(f"  progress {progress:5.0%}")

    def on_estimate_end(self, estimator):
        print("  end")


def example_listener():
    """Example 3: Observing a run with a listener."""
    print("\n" + "=" * 70)
    print("Example 3: Progress Notifications")
    print("=" * 70)

    anchors, true_pos, ranges, _, _ = simulate_room(seed=7)
    solver = RobustLaterationSolver(
        anchors,
        ranges,
        method="lmeds",
        progress_delta=0.25,
        listener=ProgressPrinter(),
        seed=0,
    )
    position = solver.solve()

    print(f"\nEstimated position: {position}")
    print(f"Position error: {np.linalg.norm(position - true_pos):.3f} m")
    print(f"Iterations: {solver.iterations}")


def example_rssi_positioning():
    """Example 4: Receiver position from the RSSI of known access points."""
    print("\n" + "=" * 70)
    print("Example 4: RSSI Positioning with Faded Readings")
    print("=" * 70)

    rng = np.random.default_rng(11)
    access_points = np.array(
        [[0, 0], [15, 0], [0, 12], [15, 12], [7, 14], [-3, 6], [18, 6], [8, -4]],
        dtype=float,
    )
    powers = np.full(len(access_points), -5.0)
    true_pos = np.array([7.0, 4.0])

    distances = np.linalg.norm(access_points - true_pos, axis=1)
    rssi = rssi_from_distance(powers, distances, 2.0) + 0.5 * rng.normal(size=len(distances))
    rssi[[2, 6]] -= 15.0

    estimator = RobustRssiPositionEstimator(
        access_points,
        rssi,
        powers,
        rssi_standard_deviations=np.full(len(rssi), 0.5),
        method="promeds",
        threshold=1.0,
        compute_and_keep_inliers=True,
        seed=0,
    )
    position = estimator.solve()

    print("RSSI from access points 2 and 6 faded by 15 dB")
    print(f"\nEstimated position: {position}")
    print(f"Position error: {np.linalg.norm(position - true_pos):.3f} m")
    print(f"Inliers: {estimator.inliers_data.inliers.astype(int)}")


def plot_robust_lateration(anchors, true_pos, nlos, ls_pos, results):
    """Plot anchors, inliers and the estimates of every method."""
    fig, ax = plt.subplots(figsize=(9, 8))

    los = np.setdiff1d(np.arange(len(anchors)), nlos)
    ax.scatter(anchors[los, 0], anchors[los, 1], s=150, c="red", marker="^",
               label="LOS anchors", zorder=5)
    ax.scatter(anchors[nlos, 0], anchors[nlos, 1], s=150, c="gray", marker="^",
               label="NLOS anchors", zorder=5)
    ax.plot(true_pos[0], true_pos[1], "g*", markersize=20, label="True position", zorder=6)
    ax.plot(ls_pos[0], ls_pos[1], "kx", markersize=14, mew=3, label="Least squares", zorder=6)

    markers = ["o", "s", "D", "v", "P"]
    for marker, (method, (position, _)) in zip(markers, results.items()):
        ax.plot(position[0], position[1], marker, markersize=10, label=method.upper(), zorder=6)

    # Inlier ranges of the PROMedS solution
    inliers = results["promeds"][1]["inliers"]
    for anchor, inlier in zip(anchors, inliers):
        style = "b-" if inlier else "r:"
        ax.plot([anchor[0], true_pos[0]], [anchor[1], true_pos[1]], style, alpha=0.3)

    ax.grid(True, alpha=0.3)
    ax.set_aspect("equal")
    ax.set_xlabel("East (m)", fontsize=12)
    ax.set_ylabel("North (m)", fontsize=12)
    ax.set_title("Robust Lateration with NLOS Anchors", fontsize=14, fontweight="bold")
    ax.legend(loc="best", fontsize=9)

    fig.tight_layout()
    return fig


def main():
    """Run all robust lateration examples."""
    print("\n" + "=" * 70)
    print("Robust Lateration Examples")
    print("=" * 70)

    anchors, true_pos, nlos, ls_pos, results = example_least_squares_vs_robust()
    example_3d_lateration()
    example_listener()
    example_rssi_positioning()

    print("\n" + "=" * 70)
    print("Generating visualization...")
    print("=" * 70)

    plot_robust_lateration(anchors, true_pos, nlos, ls_pos, results)
    plt.savefig("examples/robust_lateration_example.png", dpi=150, bbox_inches="tight")
    print("\nFigure saved: robust_lateration_example.png")

    plt.show()

    print("\n" + "=" * 70)
    print("Examples completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    main()
