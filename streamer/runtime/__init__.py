"""
Runtime orchestration: the restart policy and the playlist pipeline it drives.
"""

from streamer.runtime.restart_policy import PlaylistPipeline, PolicyState, RestartPolicy

__all__ = ["PlaylistPipeline", "PolicyState", "RestartPolicy"]
