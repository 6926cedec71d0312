"""
ShowOps Lifecycle Platform
Project model.

Models:
    - Project: a live production (show).  Owns exactly one PhaseState,
      created together with the project in project_service.create_project.
"""

from datetime import UTC, datetime

from showops.models import db


class Project(db.Model):
    """A production moving through the show lifecycle."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    phase_state = db.relationship(
        "PhaseState", back_populates="project", uselist=False,
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_phase=True):
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_phase and self.phase_state is not None:
            result["current_phase"] = self.phase_state.current_phase
            result["phase_updated_at"] = (
                self.phase_state.phase_updated_at.isoformat()
                if self.phase_state.phase_updated_at else None
            )
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
