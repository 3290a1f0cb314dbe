from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class Account(Base):
    """Stores API credentials for a Tencent Cloud account.

    secret_key is stored encrypted (Fernet). The encryption key is held in
    the TC_CERT_SECRET_KEY environment variable or a chmod-600 key file and
    never written to the database.
    """

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), unique=True, nullable=False)
    secret_id = Column(String(255), nullable=False)
    secret_key_enc = Column(Text, nullable=False)        # Fernet-encrypted
    region = Column(String(64), default="", nullable=False)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    audit_logs = relationship("AuditLog", back_populates="account", lazy="select")
    certificates = relationship("Certificate", back_populates="account", lazy="select")

    def __repr__(self) -> str:
        return f"<Account name={self.name!r} active={self.is_active}>"


class AuditLog(Base):
    """Immutable record of every remote operation performed during a rotation."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    product = Column(String(32), nullable=True)        # SSL, CDN, TEO
    operation = Column(String(128), nullable=True)     # upload_certificate, rebind_certificate, etc.
    action = Column(String(32), nullable=True)         # CREATE, UPDATE, DELETE, READ
    status = Column(String(16), nullable=True)         # SUCCESS, FAILURE, TIMEOUT
    resource_type = Column(String(128), nullable=True) # certificate, cdn_domain, edge_zone
    resource_id = Column(String(255), nullable=True)
    resource_name = Column(String(512), nullable=True)
    details = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    account = relationship("Account", back_populates="audit_logs")

    def __repr__(self) -> str:
        return f"<AuditLog [{self.timestamp}] {self.product} {self.operation} {self.status}>"


class Certificate(Base):
    """Tracks certificates uploaded by this tool for a stored account.

    replaced_by_id links a superseded certificate to the one that replaced
    it, so the rotation history of a domain set can be reconstructed.
    """

    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    cert_id = Column(String(255), nullable=True)       # ID assigned by the SSL service
    alias = Column(String(512), nullable=True)
    domains = Column(JSON, nullable=True)              # rendered domain spec lines
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    replaced_by_id = Column(Integer, ForeignKey("certificates.id"), nullable=True)

    account = relationship("Account", back_populates="certificates")
    replaced_by = relationship("Certificate", remote_side=[id], foreign_keys=[replaced_by_id])

    def __repr__(self) -> str:
        return f"<Certificate cert_id={self.cert_id!r} alias={self.alias!r} active={self.is_active}>"
