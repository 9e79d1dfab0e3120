# Projection = the current state of a project, derived by replaying its events.
#
# The projector owns it exclusively; everything else only reads it:
#
# Blocks on the board (lane, status, progress)
#
# Captured context items and their links to blocks
#
# Assistant sessions, GitHub activity, project metadata
#
# The offset of each consumer, i.e. how far into the log it has replayed

from .event_projector import BatchResult, EventProjector, FailurePolicy
from .handlers import ProjectionHandlers, github_entity_id
from .offset_tracker import OffsetTracker
