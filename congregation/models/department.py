"""Department model."""
from congregation import db
from congregation.models.base import BaseModel

class Department(BaseModel):
    """Church department, used by service roster rules."""

    __tablename__ = 'departments'

    name = db.Column(db.String(100), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, default=True)

    def __repr__(self):
        return f'<Department {self.name}>'
