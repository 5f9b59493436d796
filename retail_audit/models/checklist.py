"""
Retail Audit Platform
Checklist template hierarchy: Checklist → Section → Item → Criterion.

Checklists are owned centrally (admin-managed) and are read-only to the
audit lifecycle.  ``Criterion.weight`` is carried but not used by the
score aggregation.
"""

from retail_audit.models import db


class Checklist(db.Model):
    __tablename__ = "checklists"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    target_role = db.Column(
        db.String(20),
        nullable=True,
        comment="DOT | ADERENTE - who the template is meant for",
    )

    sections = db.relationship(
        "ChecklistSection",
        backref="checklist",
        order_by="ChecklistSection.orderindex",
        cascade="all, delete-orphan",
    )

    def iter_criteria(self):
        """Yield (section, item, criterion) in template order."""
        for section in self.sections:
            for item in section.items:
                for criterion in item.criteria:
                    yield section, item, criterion

    def criteria_ids(self) -> set[int]:
        return {c.id for _, _, c in self.iter_criteria()}

    def to_dict(self, include_tree: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "target_role": self.target_role,
        }
        if include_tree:
            data["sections"] = [s.to_dict() for s in self.sections]
        return data


class ChecklistSection(db.Model):
    __tablename__ = "checklist_sections"

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer,
        db.ForeignKey("checklists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    orderindex = db.Column(db.Integer, nullable=False, default=0)

    items = db.relationship(
        "ChecklistItem",
        backref="section",
        order_by="ChecklistItem.orderindex",
        cascade="all, delete-orphan",
    )

    def criteria(self):
        return [c for item in self.items for c in item.criteria]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "orderindex": self.orderindex,
            "items": [i.to_dict() for i in self.items],
        }


class ChecklistItem(db.Model):
    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_sections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    orderindex = db.Column(db.Integer, nullable=False, default=0)

    criteria = db.relationship(
        "Criterion",
        backref="item",
        order_by="Criterion.orderindex",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "criteria": [c.to_dict() for c in self.criteria],
        }


class Criterion(db.Model):
    __tablename__ = "criteria"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer,
        db.ForeignKey("checklist_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(500), nullable=False)
    weight = db.Column(db.Integer, nullable=False, default=1)
    orderindex = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "weight": self.weight}
