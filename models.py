from __future__ import annotations

from sqlalchemy import Boolean, Column, Integer, String, Text, UniqueConstraint

from db import Base


class User(Base):
    __tablename__ = "users"

    userId = Column(String, primary_key=True)
    discordId = Column(String, nullable=False, unique=True, index=True)
    username = Column(Text, nullable=False, default="")
    # Linked employee record for operators that are also staff (bonus attribution).
    employeeId = Column(String, nullable=False, default="", index=True)
    role = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="ACTIVE", index=True)
    lastLoginAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="", index=True)
    userId = Column(String, nullable=False, default="")
    username = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="", index=True)
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
    revokedBy = Column(String, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="", index=True)
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="", index=True)
    actorRole = Column(String, nullable=False, default="", index=True)
    at = Column(Text, nullable=False, default="", index=True)
    metaJson = Column(Text, nullable=False, default="")


class Applicant(Base):
    __tablename__ = "applicants"

    applicantId = Column(String, primary_key=True)
    # Nullable until the applicant's Discord account is linked.
    discordId = Column(String, nullable=True, index=True)
    discordUsername = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="CRITERIA", index=True)
    currentStep = Column(Integer, nullable=False, default=1)

    criteriaJson = Column(Text, nullable=False, default="{}")
    questionsJson = Column(Text, nullable=False, default="{}")
    onboardingJson = Column(Text, nullable=False, default="{}")
    discordRolesAssigned = Column(Boolean, nullable=False, default=False)

    notes = Column(Text, nullable=False, default="")
    rejectionReason = Column(Text, nullable=False, default="")
    processedBy = Column(String, nullable=False, default="")
    processedAt = Column(Text, nullable=False, default="")
    employeeId = Column(String, nullable=False, default="", index=True)

    createdAt = Column(Text, nullable=False, default="", index=True)
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Employee(Base):
    __tablename__ = "employees"

    employeeId = Column(String, primary_key=True)
    discordId = Column(String, nullable=False, unique=True, index=True)
    displayName = Column(Text, nullable=False, default="")
    rank = Column(String, nullable=False, default="")
    rankLevel = Column(Integer, nullable=False, default=1)
    # NULL when the tier's badge range was exhausted at hire time.
    badgeNumber = Column(String, nullable=True, unique=True)
    department = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="ACTIVE", index=True)
    hireDate = Column(Text, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    terminatedAt = Column(Text, nullable=False, default="")
    terminationReason = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Absence(Base):
    __tablename__ = "absences"

    absenceId = Column(String, primary_key=True)
    employeeId = Column(String, nullable=False, index=True)
    startDate = Column(Text, nullable=False, default="")
    endDate = Column(Text, nullable=False, default="")
    reason = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="PENDING")
    createdAt = Column(Text, nullable=False, default="")


class Evaluation(Base):
    __tablename__ = "evaluations"

    evaluationId = Column(String, primary_key=True)
    employeeId = Column(String, nullable=False, index=True)
    evaluatorId = Column(String, nullable=False, default="")
    rating = Column(Integer, nullable=False, default=0)
    comments = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")


class ConfigItem(Base):
    __tablename__ = "onboarding_config_items"
    __table_args__ = (UniqueConstraint("kind", "label", name="uq_onboarding_config_kind_label"),)

    itemId = Column(String, primary_key=True)
    kind = Column(String, nullable=False, index=True)
    label = Column(Text, nullable=False, default="")
    sortOrder = Column(Integer, nullable=False, default=0)
    isActive = Column(Boolean, nullable=False, default=True, index=True)
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class BlacklistEntry(Base):
    __tablename__ = "blacklist"

    entryId = Column(String, primary_key=True)
    # NULL for handle-only entries (rejected applicants never linked to Discord).
    discordId = Column(String, nullable=True, unique=True, index=True)
    username = Column(Text, nullable=False, default="")
    reason = Column(Text, nullable=False, default="")
    # Empty string means permanent.
    expiresAt = Column(Text, nullable=False, default="")
    addedBy = Column(String, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class BadgeClaim(Base):
    __tablename__ = "badge_claims"

    badgeNumber = Column(String, primary_key=True)
    employeeId = Column(String, nullable=False, default="", index=True)
    claimedAt = Column(Text, nullable=False, default="")
