"""
Diffing, patch application and the synchronizer

``diff`` and ``apply_patch`` are pure functions over track lists and
snapshots. The PlaylistSynchronizer in ``plr.sync.synchronizer`` composes
them with the state package and the providers; it is not re-exported here
because the providers depend on this package.
"""

from .diff import diff, diff_snapshots, plan_moves
from .patch import apply_patch, apply_remote, RemoteApplyResult

__all__ = [
    "diff",
    "diff_snapshots",
    "plan_moves",
    "apply_patch",
    "apply_remote",
    "RemoteApplyResult",
]
