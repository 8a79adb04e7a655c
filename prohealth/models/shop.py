"""
Shop model: one row per Shopify store that installed the app.
"""
from datetime import datetime
from ..extensions import db
from ..utils.settings_defaults import get_settings_with_defaults


class Shop(db.Model):
    """
    Shopify store running the partner program.

    Partner data itself lives in Shopify; this table only keeps what
    Shopify cannot hold for us: credentials, program settings and the
    edit-mode token version.
    """
    __tablename__ = 'shops'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), unique=True, nullable=False)
    shop_name = db.Column(db.String(255))

    # Shopify integration
    access_token = db.Column(db.Text)
    webhook_secret = db.Column(db.String(100))
    scopes = db.Column(db.Text)  # comma separated, as granted

    # Program settings (JSON for flexibility)
    settings = db.Column(db.JSON, default=dict)

    # Bumped on lock to revoke every outstanding edit token
    edit_token_version = db.Column(db.Integer, default=1, nullable=False)

    is_active = db.Column(db.Boolean, default=True)
    installed_at = db.Column(db.DateTime, default=datetime.utcnow)
    uninstalled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    reconciliations = db.relationship('ReconciliationRecord', backref='shop', lazy='dynamic')

    def __repr__(self):
        return f'<Shop {self.shop_domain}>'

    def get_settings(self, config=None) -> dict:
        """Shop settings merged over defaults."""
        return get_settings_with_defaults(self.settings or {}, config)

    def to_dict(self):
        return {
            'id': self.id,
            'shop_domain': self.shop_domain,
            'shop_name': self.shop_name,
            'scopes': self.scopes.split(',') if self.scopes else [],
            'is_active': self.is_active,
            'installed': bool(self.access_token),
            'installed_at': self.installed_at.isoformat() if self.installed_at else None,
        }
