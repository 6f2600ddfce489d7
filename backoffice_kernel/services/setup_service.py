"""
SetupService -- chart of accounts, branches, operators and per-float GL
mappings.

Everything here is idempotent: re-running a seed or an initialization
reuses what exists and only adds what is missing.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice_kernel.db.base import SYSTEM_ACTOR_ID
from backoffice_kernel.domain.clock import Clock
from backoffice_kernel.domain.security import hash_password
from backoffice_kernel.exceptions import (
    BranchNotFoundError,
    ConflictError,
    FloatAccountNotFoundError,
    GLAccountNotFoundError,
    MissingFieldError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.branch import Branch, Operator, OperatorRole
from backoffice_kernel.models.float_account import FloatAccount
from backoffice_kernel.models.ledger import GLAccount, GLAccountType, GLMapping, MappingType
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.float_account_service import (
    FloatAccountInfo,
    FloatAccountService,
)
from backoffice_config import BackofficeConfig

logger = get_logger("services.setup")


@dataclass(frozen=True)
class BranchInfo:
    id: UUID
    code: str
    name: str
    is_main: bool
    is_active: bool


@dataclass(frozen=True)
class MappingInfo:
    mapping_type: str
    transaction_type: str
    gl_account_code: str
    created: bool


class SetupService(BaseService[Branch]):
    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: BackofficeConfig,
        float_service: FloatAccountService | None = None,
    ):
        super().__init__(session)
        self.clock = clock
        self.config = config
        self.float_service = float_service or FloatAccountService(session, clock)

    @staticmethod
    def _branch_dto(branch: Branch) -> BranchInfo:
        return BranchInfo(
            id=branch.id,
            code=branch.code,
            name=branch.name,
            is_main=branch.is_main,
            is_active=branch.is_active,
        )

    def seed_chart_of_accounts(self, actor_id: UUID = SYSTEM_ACTOR_ID) -> int:
        """Create configured GL accounts whose codes do not exist yet.  Returns the count added."""
        existing = set(self.session.scalars(select(GLAccount.code)))
        added = 0
        for definition in self.config.chart_of_accounts:
            if definition.code in existing:
                continue
            self.session.add(
                GLAccount(
                    code=definition.code,
                    name=definition.name,
                    account_type=GLAccountType(definition.account_type).value,
                    parent_code=definition.parent_code,
                    is_active=True,
                    created_by_id=actor_id,
                )
            )
            existing.add(definition.code)
            added += 1
        self.session.flush()
        logger.info(
            "chart_of_accounts_seeded",
            extra={"accounts_added": added, "config_id": self.config.config_id},
        )
        return added

    def create_branch(
        self,
        code: str,
        name: str,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        is_main: bool | None = None,
    ) -> BranchInfo:
        """
        Create a branch.  The configured main branch code is flagged main
        unless ``is_main`` says otherwise.
        """
        if not code:
            raise MissingFieldError("code")
        if not name:
            raise MissingFieldError("name")
        code = code.strip().upper()
        taken = self.session.scalar(select(Branch.id).where(Branch.code == code))
        if taken is not None:
            raise ConflictError(f"Branch code {code} already exists")
        branch = Branch(
            code=code,
            name=name,
            is_main=(code == self.config.main_branch_code) if is_main is None else is_main,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(branch)
        self.session.flush()
        logger.info("branch_created", extra={"branch_code": code, "is_main": branch.is_main})
        return self._branch_dto(branch)

    def get_branch(self, branch_ref: UUID | str) -> BranchInfo:
        """Look a branch up by id or code."""
        return self._branch_dto(self._branch(branch_ref))

    def create_operator(
        self,
        username: str,
        full_name: str,
        role: OperatorRole | str,
        password: str,
        branch_id: UUID | None = None,
        phone: str | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> UUID:
        if not username:
            raise MissingFieldError("username")
        if not password:
            raise MissingFieldError("password")
        taken = self.session.scalar(
            select(Operator.id).where(func.lower(Operator.username) == username.lower())
        )
        if taken is not None:
            raise ConflictError(f"Username {username} already exists")
        operator = Operator(
            username=username,
            full_name=full_name,
            role=OperatorRole(str(getattr(role, "value", role)).lower()).value,
            branch_id=branch_id,
            password_hash=hash_password(password),
            phone=phone,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(operator)
        self.session.flush()
        return operator.id

    def initialize_branch(
        self, branch_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID
    ) -> list[FloatAccountInfo]:
        """
        Open the configured default floats for a branch and their GL
        mappings.  Floats that already exist (same type and provider) are
        left alone.
        """
        branch = self._branch(branch_id)
        current = {
            (a.account_type, (a.provider or "").lower())
            for a in self.float_service.list_for_branch(branch.id, active_only=False)
        }
        created = []
        for template in self.config.branch_floats:
            key = (template.account_type, (template.provider or "").lower())
            if key in current:
                continue
            account = self.float_service.create_account(
                branch.id,
                template.account_type,
                actor_id,
                provider=template.provider,
                min_threshold=template.min_threshold,
                max_threshold=template.max_threshold,
            )
            self.create_float_mappings(account.id, actor_id)
            created.append(account)
        logger.info(
            "branch_initialized",
            extra={"branch_code": branch.code, "floats_created": len(created)},
        )
        return created

    def create_float_mappings(
        self, float_account_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID
    ) -> list[MappingInfo]:
        """
        Open the float's own GL sub-accounts (one per role in its type's
        template, coded <parent>-<branch>-<provider or type>) and pin them to
        the float with GL mappings.
        """
        account = self.session.get(FloatAccount, float_account_id)
        if account is None:
            raise FloatAccountNotFoundError(str(float_account_id))
        template = self.config.mapping_template_for(account.account_type)
        if template is None:
            logger.warning(
                "float_mapping_template_missing",
                extra={"account_type": account.account_type},
            )
            return []
        branch = self._branch(account.branch_id)
        suffix = f"{branch.code}-{account.provider or account.account_type}".upper().replace(" ", "-")

        results = []
        for role, parent_code in template.roles:
            mapping_type = MappingType(role)
            gl_account = self._sub_account(parent_code, suffix, branch, account, actor_id)
            existing = self.session.scalars(
                select(GLMapping).where(
                    GLMapping.float_account_id == account.id,
                    GLMapping.mapping_type == mapping_type.value,
                )
            ).first()
            if existing is not None:
                results.append(
                    MappingInfo(mapping_type.value, existing.transaction_type, existing.gl_account.code, False)
                )
                continue
            self.session.add(
                GLMapping(
                    branch_id=branch.id,
                    transaction_type=template.transaction_type,
                    mapping_type=mapping_type.value,
                    gl_account_id=gl_account.id,
                    float_account_id=account.id,
                    is_active=True,
                    created_by_id=actor_id,
                )
            )
            results.append(
                MappingInfo(mapping_type.value, template.transaction_type, gl_account.code, True)
            )
        self.session.flush()
        logger.info(
            "float_mappings_created",
            extra={
                "float_account_id": str(account.id),
                "mappings_created": sum(1 for r in results if r.created),
            },
        )
        return results

    def _sub_account(
        self,
        parent_code: str,
        suffix: str,
        branch: Branch,
        account: FloatAccount,
        actor_id: UUID,
    ) -> GLAccount:
        code = f"{parent_code}-{suffix}"
        gl_account = self.session.scalar(select(GLAccount).where(GLAccount.code == code))
        if gl_account is not None:
            return gl_account
        parent = self.session.scalar(select(GLAccount).where(GLAccount.code == parent_code))
        if parent is None:
            raise GLAccountNotFoundError(parent_code)
        gl_account = GLAccount(
            code=code,
            name=f"{parent.name} - {branch.name} {account.provider or account.account_type}",
            account_type=parent.account_type,
            parent_code=parent.code,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(gl_account)
        self.session.flush()
        return gl_account

    def _branch(self, branch_ref: UUID | str) -> Branch:
        if isinstance(branch_ref, UUID):
            branch = self.session.get(Branch, branch_ref)
        else:
            branch = self.session.scalar(
                select(Branch).where(Branch.code == str(branch_ref).strip().upper())
            )
        if branch is None:
            raise BranchNotFoundError(str(branch_ref))
        return branch
