from feedcurator.extensions import db
from sqlalchemy import func

GLOBAL_SCOPE = 'global'


class Setting(db.Model):
    """String key/value setting, scoped globally or to one reader."""
    __tablename__ = 'settings'

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(64), nullable=False, default=GLOBAL_SCOPE)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        db.UniqueConstraint('scope', 'key', name='uq_settings_scope_key'),
    )

    @classmethod
    def get_value(cls, key, default=None, scope=GLOBAL_SCOPE):
        row = cls.query.filter_by(scope=str(scope), key=key).first()
        if not row:
            return default
        return row.value

    @classmethod
    def get_all(cls, scope=GLOBAL_SCOPE):
        rows = cls.query.filter_by(scope=str(scope)).all()
        return {row.key: row.value for row in rows}

    @classmethod
    def set_value(cls, key, value, scope=GLOBAL_SCOPE):
        row = cls.query.filter_by(scope=str(scope), key=key).first()
        if not row:
            row = cls(scope=str(scope), key=key, value=str(value))
            db.session.add(row)
        else:
            row.value = str(value)
        return row
