from sqlalchemy import Column, Integer, String, JSON, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from orderentry.core.database import Base


class OrderTemplate(Base):
    """
    Saved order-entry template.

    `fields_config` is stored as received from the authoring surface. Older
    writers produced JSON strings and sectioned maps, so readers must always
    go through the schema normalizer instead of trusting its shape.
    """
    __tablename__ = "order_templates"

    id = Column(Integer, primary_key=True, index=True)
    template_name = Column(String(100), nullable=False, index=True)
    template_type = Column(String(50), nullable=False)  # general, grid, or a legacy alias
    fields_config = Column(JSON, nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    versions = relationship(
        "TemplateVersion",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateVersion.id"
    )

    def __repr__(self):
        return f"<OrderTemplate(name='{self.template_name}', type='{self.template_type}')>"

    def snapshot(self) -> dict:
        return {
            "templateName": self.template_name,
            "templateType": self.template_type,
            "fieldsConfig": self.fields_config,
        }


class TemplateVersion(Base):
    """Snapshot of a template taken each time it is edited."""
    __tablename__ = "template_versions"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("order_templates.id", ondelete="CASCADE"), nullable=False)
    version_number = Column(String(20), nullable=False)  # "1.0", "1.1", ...
    changes = Column(JSON, nullable=True)  # Top-level keys that changed
    template_config = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    template = relationship("OrderTemplate", back_populates="versions")
