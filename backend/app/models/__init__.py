# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# et EmbeddedBase.metadata avant tout create_all().

from app.models.student import LocalStudent  # noqa: F401
from app.models.attendance import LocalAttendance  # noqa: F401
from app.models.sync_metadata import SyncMetadata  # noqa: F401
from app.models.embedded import AttendanceObject, MetadataObject, StudentObject  # noqa: F401
