from typing import Optional, Any
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .clock import utcnow


class QueueAuditLogger:
	"""Records queue mutations as AuditLog rows in the caller's session.

	Rows are committed together with the operation they describe, so a rolled
	back transition leaves no trail.
	"""

	def __init__(self, clock=utcnow):
		self.clock = clock
		self.logger = logging.getLogger('clinicqueue.audit')

	def log_event(
		self,
		db: Session,
		action: Any,
		actor_role: Optional[str] = None,
		actor_id: Optional[Any] = None,
		doctor_id: Optional[int] = None,
		appointment_id: Optional[int] = None,
		details: Optional[str] = None,
		severity: str = 'INFO',
		**_: Any
	) -> None:
		"""Adds an audit row. Accepts and ignores extra kwargs."""
		try:
			action_enum = action if isinstance(action, models.QueueAction) else models.QueueAction(str(action).upper())
		except ValueError:
			action_enum = models.QueueAction.STATUS_CHANGE

		try:
			db.add(models.AuditLog(
				actor_role=actor_role or 'system',
				actor_id=str(actor_id) if actor_id is not None else None,
				action=action_enum,
				doctor_id=doctor_id,
				appointment_id=appointment_id,
				severity=severity or 'INFO',
				details=details,
				timestamp=self.clock(),
			))
		except SQLAlchemyError as e:
			self.logger.error(f"Failed to add queue audit log: {e}")


# Singleton instance for global import
queue_audit = QueueAuditLogger()
