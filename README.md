# slamkit

Building blocks for feature-based visual SLAM, written on top of NumPy.

slamkit gathers numerical solvers and bookkeeping from a keyframe-based SLAM
pipeline into small, testable pieces.

## What is in it

- **Camera pose from 2D–3D matches** — `slamkit.epnp.solve_epnp(world_points,
  image_points, intrinsics)` estimates a world-to-camera pose with EPnP: it
  picks control points by PCA, refines three beta approximations by
  Gauss–Newton and returns the one with the lowest mean reprojection error as
  a `PoseEstimate` (`rotation`, `translation`, `error`). Intrinsics are given as
  `CameraIntrinsics(fu, fv, uc, vc)`. `slamkit.epnp.reprojection_error` gives
  the mean pixel error of any pose.
- **RANSAC PnP** — `slamkit.pnp_solver.PnPSolver` takes a list of
  `Correspondence(index, world_point, image_point, sigma_square)` and runs
  RANSAC over minimal EPnP samples, refining on the best inlier set.
  `set_ransac_parameters(probability, min_inliers, max_iterations, min_set,
  epsilon, th2)` adapts the thresholds to the number of matches. Results come
  back as a `RansacResult` with a 4x4 `pose` (or `None`), one inlier flag per
  match index, the inlier count and a `no_more` flag telling that the
  iteration budget is spent.
- **Similarity transforms** — `slamkit.sim3_solver.compute_sim3(points1,
  points2, fix_scale)` solves Horn's closed-form absolute orientation and
  returns a `Sim3Transform` (`rotation`, `translation`, `scale`, with `matrix`
  and `inverse_matrix`). `Sim3Solver` runs RANSAC over three-point samples of
  `Sim3Match` objects, accepting a model only when it reprojects well in both
  cameras; `project` and `from_camera_to_image` do the pinhole projections.
- **Linear-algebra helpers** — `slamkit.pnp_math` has a Householder
  `qr_solve(a, b)` (raising `SingularMatrixError` on an all-zero column),
  `mat_to_quat(rotation)` and `relative_error(...)` for comparing two poses.
- **Trajectory export** — `slamkit.trajectory` describes keyframes as
  `KeyFrameNode` (pose, `bad` flag, `parent` and `tcp` for the spanning tree)
  and tracked frames as `FrameRecord`. `resolve_frame_poses` puts every frame
  in the coordinates of the lowest-id keyframe, walking up the tree past bad
  keyframes. `save_trajectory_tum`, `save_keyframe_trajectory_tum` and
  `save_trajectory_kitti` write the TUM RGB-D and KITTI text formats; the two
  per-frame writers raise `MonocularTrajectoryError` for `Sensor.MONOCULAR`.
- **Settings files** — `slamkit.settings.load_settings(path, sensor)` and
  `parse_settings(text, sensor)` read camera intrinsics, distortion, baseline,
  frame rate, colour order, ORB extractor parameters, the depth threshold
  (stereo and RGB-D) and the depth map factor (RGB-D) from an OpenCV-style
  YAML file into a `TrackingSettings`. `slamkit.viewer.parse_viewer_settings`
  reads the viewer's frame rate, image size and viewpoint.
- **Tracking bookkeeping** — `slamkit.tracking_state` has the
  `TrackingState` enum, `choose_strategy(...)` deciding between
  initialisation, reference keyframe, motion model and relocalisation,
  `FrameHistory` for the per-frame record needed to rebuild a trajectory,
  `to_grayscale` for 3- and 4-channel images and `update_velocity` for the
  constant-velocity motion model.
- **Thread coordination** — `slamkit.system_state.SystemState` holds the
  localisation-mode and reset requests and the latest tracking results under
  locks; `slamkit.viewer.ThreadControl` implements the stop / release /
  finish handshake of a worker loop.

## Requirements

Python 3.10 or later, NumPy and PyYAML.

## A first look

```python
import numpy as np

from slamkit.pnp_math import mat_to_quat

# Quaternion of a rotation matrix, ordered (x, y, z, w).
q = mat_to_quat(np.eye(3))
# q == (0.0, 0.0, 0.0, 1.0)
```

Both RANSAC solvers accept an `rng` argument, a `random.Random` instance, so
runs can be reproduced by passing a seeded one. `find()` runs with the
configured iteration budget. `Sim3Solver.iterate(n)` runs at most `n` more
iterations; `PnPSolver.iterate(n)` runs at least `n` more, and keeps going
until the configured budget is reached, stopping early on success. Either
lets a caller interleave several solvers, one per candidate keyframe.

## What it does not do

slamkit has no command-line program and no running SLAM system. It does not
extract or match features, build or optimise a map, detect loops, decide when
to insert keyframes, or draw anything on screen: the viewer module only
parses settings and provides the thread handshake. Those parts are left to the
application that uses these pieces.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.