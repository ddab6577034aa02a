"""Prompt template manager"""

from datetime import datetime
from typing import Optional, Dict, Any, List, Union
from uuid import uuid4

import structlog
from pydantic import ValidationError

from promptops.analytics.recorder import ExecutionRecorder
from promptops.core.exceptions import (
    TemplateNotFoundError,
    TemplateValidationError,
    VersionConflictError,
)
from promptops.events.bus import EventBus
from promptops.models.events import EventType
from promptops.models.prompt_template import (
    PromptTemplate,
    PromptTemplateCreate,
    PromptVariable,
    PromptVersion,
    SearchCriteria,
    SortField,
    SortOrder,
    ValidationResult,
    VariableType,
)
from promptops.prompts.compiler import TemplateCompiler
from promptops.storage.repository import InMemoryRepository, Namespace, Repository

logger = structlog.get_logger(__name__)

INITIAL_VERSION = "1.0.0"
FALLBACK_VERSION = "1.0.1"
PROTECTED_FIELDS = {"id", "version", "created_at", "updated_at"}


def increment_version(version: str) -> str:
    """Bump the patch component of an x.y.z version"""
    parts = version.split(".")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        return FALLBACK_VERSION
    major, minor, patch = (int(part) for part in parts)
    return f"{major}.{minor}.{patch + 1}"


def stand_in_value(variable: PromptVariable) -> Any:
    """A value used in place of a binding when validating a definition"""
    if variable.has_default:
        return variable.default

    constraints = variable.constraints
    if constraints and constraints.enum:
        return constraints.enum[0]

    if variable.type is VariableType.STRING:
        value = "test_value"
        if constraints and constraints.min_length and len(value) < constraints.min_length:
            value = value.ljust(constraints.min_length, "x")
        if constraints and constraints.max_length is not None:
            value = value[:constraints.max_length]
        return value
    if variable.type is VariableType.NUMBER:
        if constraints and constraints.min is not None:
            return constraints.min
        if constraints and constraints.max is not None and constraints.max < 0:
            return constraints.max
        return 0
    if variable.type is VariableType.BOOLEAN:
        return True
    if variable.type is VariableType.ARRAY:
        return []
    return {}


def _pydantic_messages(error: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    ]


class TemplateManager:
    """Manage prompt templates with versioning"""

    def __init__(
        self,
        repository: Optional[Repository] = None,
        compiler: Optional[TemplateCompiler] = None,
        bus: Optional[EventBus] = None,
        recorder: Optional[ExecutionRecorder] = None,
        enable_versioning: bool = True,
        max_versions_per_template: int = 10,
    ):
        self.repository = repository if repository is not None else InMemoryRepository()
        self.compiler = compiler or TemplateCompiler()
        self.bus = bus if bus is not None else EventBus()
        self.recorder = recorder
        self.enable_versioning = enable_versioning
        self.max_versions_per_template = max_versions_per_template
        self.templates_cache: Dict[str, PromptTemplate] = {}
        self.versions_cache: Dict[str, List[PromptVersion]] = {}

        # Definitions may reference variables they do not declare; that is
        # reported as a warning, so the check compiles leniently.
        self._definition_compiler = TemplateCompiler(
            self.compiler.options.model_copy(update={"strict_mode": False})
        )

    async def load(self):
        """Load stored templates and versions; on failure keep going in memory"""
        try:
            for template_id in await self.repository.list_keys(Namespace.TEMPLATES):
                data = await self.repository.get(Namespace.TEMPLATES, template_id)
                if data:
                    template = PromptTemplate.model_validate(data)
                    self.templates_cache[template.id] = template

            for template_id in await self.repository.list_keys(Namespace.VERSIONS):
                data = await self.repository.get(Namespace.VERSIONS, template_id)
                if data:
                    self.versions_cache[template_id] = [
                        PromptVersion.model_validate(item) for item in data
                    ]
        except Exception as e:
            logger.warning("Failed to load stored templates; continuing in memory", error=str(e))
            return

        logger.info(
            "Templates loaded",
            templates=len(self.templates_cache),
            versioned=len(self.versions_cache),
        )

    async def create_template(
        self,
        definition: Union[PromptTemplateCreate, Dict[str, Any]],
    ) -> PromptTemplate:
        """Create a new template at version 1.0.0"""
        template_id = str(uuid4())
        try:
            if isinstance(definition, dict):
                try:
                    definition = PromptTemplateCreate.model_validate(definition)
                except ValidationError as e:
                    messages = _pydantic_messages(e)
                    raise TemplateValidationError(
                        f"Template validation failed: {', '.join(messages)}",
                        messages,
                        template_id,
                    ) from e

            now = datetime.now()
            template = PromptTemplate(
                id=template_id,
                version=INITIAL_VERSION,
                created_at=now,
                updated_at=now,
                is_active=True,
                **definition.model_dump(),
            )

            self._raise_if_invalid(template)

            await self._save_template(template)
            self.templates_cache[template.id] = template

            if self.enable_versioning:
                await self._store_version(template, "Initial version")

            self.bus.emit(
                EventType.TEMPLATE_CREATED,
                template_id=template.id,
                name=template.name,
                version=template.version,
            )
            logger.info("Template created", template_id=template.id, name=template.name)
            return template.model_copy(deep=True)

        except Exception as e:
            self._emit_error("create", template_id, e)
            raise

    async def update_template(
        self,
        template_id: str,
        updates: Dict[str, Any],
        changelog: Optional[str] = None,
    ) -> PromptTemplate:
        """Merge `updates` onto the template and bump its patch version"""
        try:
            existing = self.templates_cache.get(template_id)
            if not existing:
                raise TemplateNotFoundError(template_id)

            # skip labels already taken by explicit versions
            archived = {v.version for v in self.versions_cache.get(template_id, [])}
            new_version = increment_version(existing.version)
            while new_version in archived:
                new_version = increment_version(new_version)

            data = existing.model_dump()
            data.update({key: value for key, value in updates.items() if key not in PROTECTED_FIELDS})
            data.update(
                id=template_id,
                version=new_version,
                created_at=existing.created_at,
                updated_at=datetime.now(),
            )

            try:
                updated = PromptTemplate.model_validate(data)
            except ValidationError as e:
                messages = _pydantic_messages(e)
                raise TemplateValidationError(
                    f"Template validation failed: {', '.join(messages)}",
                    messages,
                    template_id,
                ) from e

            self._raise_if_invalid(updated)

            await self._save_template(updated)
            self.templates_cache[template_id] = updated

            if self.enable_versioning:
                await self._store_version(updated, changelog or "Template updated")

            self.bus.emit(
                EventType.TEMPLATE_UPDATED,
                template_id=template_id,
                previous_version=existing.version,
                new_version=new_version,
            )
            logger.info(
                "Template updated",
                template_id=template_id,
                previous_version=existing.version,
                new_version=new_version,
            )
            return updated.model_copy(deep=True)

        except Exception as e:
            self._emit_error("update", template_id, e)
            raise

    async def get_template(
        self,
        template_id: str,
        version: Optional[str] = None,
    ) -> Optional[PromptTemplate]:
        """
        Get template by ID

        With a version, the archived text and variables are overlaid on the
        live record; name, tags and other fields are not versioned.
        """
        template = self.templates_cache.get(template_id)
        if not template:
            return None

        if version is None:
            return template.model_copy(deep=True)

        archived = next(
            (v for v in self.versions_cache.get(template_id, []) if v.version == version),
            None,
        )
        if archived is None:
            return None

        return template.model_copy(
            update={
                "template": archived.template,
                "variables": [variable.model_copy() for variable in archived.variables],
                "version": archived.version,
            },
            deep=True,
        )

    async def delete_template(self, template_id: str) -> bool:
        """Soft delete: the record stays retrievable with is_active=False"""
        try:
            template = self.templates_cache.get(template_id)
            if not template:
                return False

            deactivated = template.model_copy(update={"is_active": False, "updated_at": datetime.now()})
            await self._save_template(deactivated)
            self.templates_cache[template_id] = deactivated

            self.bus.emit(EventType.TEMPLATE_DELETED, template_id=template_id)
            logger.info("Template deactivated", template_id=template_id)
            return True

        except Exception as e:
            self._emit_error("delete", template_id, e)
            raise

    async def search_templates(self, criteria: Optional[SearchCriteria] = None) -> List[PromptTemplate]:
        """Filter, sort and paginate templates"""
        criteria = criteria or SearchCriteria()
        results = list(self.templates_cache.values())

        if criteria.query:
            query = criteria.query.lower()
            results = [
                t for t in results
                if query in t.name.lower()
                or query in t.description.lower()
                or query in t.template.lower()
            ]

        if criteria.category:
            results = [t for t in results if t.category == criteria.category]

        if criteria.tags:
            results = [t for t in results if any(tag in t.tags for tag in criteria.tags)]

        if criteria.created_by:
            results = [t for t in results if t.created_by == criteria.created_by]

        if criteria.created_after:
            results = [t for t in results if t.created_at >= criteria.created_after]

        if criteria.created_before:
            results = [t for t in results if t.created_at <= criteria.created_before]

        if criteria.is_active is not None:
            results = [t for t in results if t.is_active == criteria.is_active]

        if criteria.has_variables is not None:
            results = [t for t in results if bool(t.variables) == criteria.has_variables]

        if criteria.sort_by:
            results.sort(
                key=self._sort_key(criteria.sort_by),
                reverse=criteria.sort_order is SortOrder.DESC,
            )

        end = None if criteria.limit is None else criteria.offset + criteria.limit
        return [t.model_copy(deep=True) for t in results[criteria.offset:end]]

    async def compile_template(
        self,
        template_id: str,
        variables: Dict[str, Any],
        version: Optional[str] = None,
    ) -> str:
        """Compile a stored template (optionally an archived version)"""
        try:
            template = await self.get_template(template_id, version)
            if not template:
                raise TemplateNotFoundError(template_id, version)

            compiled = self.compiler.compile(template, variables)

            self.bus.emit(
                EventType.TEMPLATE_COMPILED,
                template_id=template_id,
                version=template.version,
                compiled_length=len(compiled),
            )
            return compiled

        except Exception as e:
            self._emit_error("compile", template_id, e, version=version)
            raise

    async def validate_bindings(
        self,
        template_id: str,
        variables: Dict[str, Any],
        version: Optional[str] = None,
    ) -> ValidationResult:
        """Validate caller bindings against a stored template's schema"""
        template = await self.get_template(template_id, version)
        if not template:
            raise TemplateNotFoundError(template_id, version)
        return self.compiler.validate(template, variables)

    def validate_template(self, template: PromptTemplate) -> ValidationResult:
        """Structural checks plus a compile with stand-in bindings"""
        errors: List[str] = []

        if not template.name or not template.name.strip():
            errors.append("Template name is required")

        if not template.template or not template.template.strip():
            errors.append("Template content is required")

        if not template.category or not template.category.strip():
            errors.append("Template category is required")

        seen = set()
        for variable in template.variables:
            if not variable.name or not variable.name.strip():
                errors.append("Variable name is required")
                continue
            if variable.name in seen:
                errors.append(f"Duplicate variable name: {variable.name}")
            seen.add(variable.name)

            if variable.has_default:
                errors.extend(
                    f"Default value invalid: {message}"
                    for message in self.compiler.check_value(variable, variable.default)
                )

        stand_ins = {
            variable.name: stand_in_value(variable)
            for variable in template.variables
            if variable.name
        }
        compiled = self._definition_compiler.validate(template, stand_ins, check_constraints=False)

        all_errors = errors + compiled.errors
        return ValidationResult(
            is_valid=not all_errors,
            errors=all_errors,
            warnings=compiled.warnings,
            missing_variables=compiled.missing_variables,
            unused_variables=compiled.unused_variables,
            compiled_prompt=compiled.compiled_prompt,
        )

    async def create_version(
        self,
        template_id: str,
        version: str,
        changelog: str,
    ) -> PromptVersion:
        """Snapshot the live template under an explicit version label"""
        try:
            template = self.templates_cache.get(template_id)
            if not template:
                raise TemplateNotFoundError(template_id)

            return await self._store_version(template, changelog, version=version)

        except Exception as e:
            self._emit_error("create_version", template_id, e, version=version)
            raise

    async def get_versions(self, template_id: str) -> List[PromptVersion]:
        """Version history, oldest first"""
        return list(self.versions_cache.get(template_id, []))

    async def close(self):
        self.templates_cache.clear()
        self.versions_cache.clear()

    def _raise_if_invalid(self, template: PromptTemplate):
        validation = self.validate_template(template)
        if not validation.is_valid:
            raise TemplateValidationError(
                f"Template validation failed: {', '.join(validation.errors)}",
                validation.errors,
                template.id,
            )
        for warning in validation.warnings:
            logger.debug("Template validation warning", template_id=template.id, warning=warning)

    def _sort_key(self, sort_by: SortField):
        if sort_by is SortField.UPDATED_AT:
            return lambda t: t.updated_at
        if sort_by is SortField.NAME:
            return lambda t: t.name.lower()
        if sort_by is SortField.USAGE:
            return lambda t: self.recorder.usage_count(t.id) if self.recorder else 0
        if sort_by is SortField.PERFORMANCE:
            return lambda t: self.recorder.performance_score(t.id) if self.recorder else 0.0
        return lambda t: t.created_at

    async def _save_template(self, template: PromptTemplate):
        await self.repository.set(
            Namespace.TEMPLATES,
            template.id,
            template.model_dump(mode="json"),
        )

    async def _store_version(
        self,
        template: PromptTemplate,
        changelog: str,
        version: Optional[str] = None,
    ) -> PromptVersion:
        """Append a snapshot and trim history to the most recent entries"""
        version = version or template.version
        versions = list(self.versions_cache.get(template.id, []))

        if any(v.version == version for v in versions):
            raise VersionConflictError(template.id, version)

        snapshot = PromptVersion(
            template_id=template.id,
            version=version,
            template=template.template,
            variables=[variable.model_copy() for variable in template.variables],
            changelog=changelog,
            created_by=template.created_by,
        )
        versions.append(snapshot)

        removed: List[PromptVersion] = []
        if len(versions) > self.max_versions_per_template:
            versions.sort(key=lambda v: v.created_at)
            removed = versions[:-self.max_versions_per_template]
            versions = versions[-self.max_versions_per_template:]

        await self.repository.set(
            Namespace.VERSIONS,
            template.id,
            [v.model_dump(mode="json") for v in versions],
        )
        self.versions_cache[template.id] = versions

        if removed:
            self.bus.emit(
                EventType.VERSIONS_PRUNED,
                template_id=template.id,
                removed_versions=[v.version for v in removed],
            )

        self.bus.emit(
            EventType.VERSION_CREATED,
            template_id=template.id,
            version=snapshot.version,
            changelog=changelog,
        )
        return snapshot

    def _emit_error(self, operation: str, template_id: Optional[str], error: Exception, **context):
        self.bus.emit(
            EventType.ERROR,
            template_id=template_id,
            operation=operation,
            error=str(error),
            **context,
        )
        logger.warning(
            "Template operation failed",
            operation=operation,
            template_id=template_id,
            error=str(error),
        )
