"""Assessment database operations used by the context mirror."""

from datetime import datetime
from typing import Any

from pydantic import ValidationError

from cortex_insights.core.insight_errors import PersistenceError
from cortex_insights.core.logging import get_logger
from cortex_insights.core.schemas_context_mirror import AssessmentRecord, ContextProfile
from cortex_insights.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "assessments"
SELECT_COLUMNS = "id, user_id, context_profile, context_mirror, context_mirror_updated_at"


def _to_record(row: dict[str, Any]) -> AssessmentRecord:
    profile = row.get("context_profile")
    if profile is not None:
        try:
            profile = ContextProfile.model_validate(profile)
        except ValidationError as e:
            # An unreadable profile is treated as not profiled yet
            logger.warning(f"Assessment {row.get('id')} has an invalid context profile: {e}")
            profile = None
    return AssessmentRecord.model_validate({**row, "context_profile": profile})


class AssessmentStore:
    """Reads assessments and writes the persisted context mirror."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        return self._client or get_supabase()

    def get_assessment(self, assessment_id: str) -> AssessmentRecord | None:
        """
        Fetch an assessment by id.

        Args:
            assessment_id: Assessment UUID as a string

        Returns:
            The record, or None if no row exists
        """
        try:
            response = (
                self.client.table(TABLE)
                .select(SELECT_COLUMNS)
                .eq("id", assessment_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to get assessment {assessment_id}: {e}")
            raise

        if not response.data:
            return None
        return _to_record(response.data[0])

    def save_context_mirror(
        self,
        assessment_id: str,
        stored_payload: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        """
        Persist the durable payload and its timestamp.

        Raises:
            PersistenceError: If the write fails or matches no row
        """
        try:
            response = (
                self.client.table(TABLE)
                .update(
                    {
                        "context_mirror": stored_payload,
                        "context_mirror_updated_at": updated_at.isoformat(),
                    }
                )
                .eq("id", assessment_id)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to save context mirror for {assessment_id}: {e}") from e

        if not response.data:
            raise PersistenceError(f"Assessment not found when saving context mirror: {assessment_id}")

        logger.info(f"Saved context mirror for assessment {assessment_id}")
