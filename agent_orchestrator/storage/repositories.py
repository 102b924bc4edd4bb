"""SQLAlchemy-backed repositories for workflows, executions, agents and prompts.

The workflow and execution repositories satisfy the ``WorkflowStore`` and
``ExecutionStore`` interfaces consumed by the workflow engine.
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional
from pydantic_core import to_jsonable_python
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..core.exceptions import NotFoundError, StorageError
from ..core.logging import get_logger
from ..models.core import (
    ExecutionRecord,
    ExecutionStatusEnum,
    ExecutionUpdate,
    Position,
    Workflow,
    WorkflowConfig,
    WorkflowEdge,
    WorkflowNode,
    WorkflowStatus,
)
from ..models.agent import Agent, AgentStatus
from ..models.prompt import Prompt, PromptCategory, PromptUpdate, PromptVersion
from .database import session_scope
from .models import (
    AgentModel,
    PromptModel,
    PromptVersionModel,
    WorkflowEdgeModel,
    WorkflowExecutionModel,
    WorkflowModel,
    WorkflowNodeModel,
)

logger = get_logger(__name__)


def to_json_column(value: Any) -> Any:
    """Convert a value for a JSON column; objects JSON cannot hold are stored as their ``str``."""
    return to_jsonable_python(value, fallback=str)


class WorkflowRepository:
    """Stores workflow definitions together with their nodes and edges."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, workflow: Workflow) -> Workflow:
        """
        Persist a new workflow definition.

        Args:
            workflow: Workflow to store; node and edge order is preserved

        Returns:
            The stored workflow, including timestamps

        Raises:
            StorageError: If the workflow id is taken or the write fails
        """
        try:
            with session_scope(self._session_factory) as db:
                if db.get(WorkflowModel, workflow.id) is not None:
                    raise StorageError(f"Workflow with ID '{workflow.id}' already exists",
                                       operation="create", table="workflows")

                workflow_model = WorkflowModel(
                    id=workflow.id,
                    name=workflow.name,
                    description=workflow.description,
                    status=workflow.status.value,
                    config=workflow.config.model_dump(mode="json"),
                    created_at=datetime.utcnow(),
                    nodes=[
                        WorkflowNodeModel(
                            node_id=node.id,
                            type=node.type.value,
                            agent_id=node.agent_id,
                            prompt_id=node.prompt_id,
                            config=node.config,
                            position_x=node.position.x,
                            position_y=node.position.y,
                        )
                        for node in workflow.nodes
                    ],
                    edges=[
                        WorkflowEdgeModel(
                            edge_id=edge.id,
                            source=edge.source,
                            target=edge.target,
                            condition=edge.condition,
                        )
                        for edge in workflow.edges
                    ],
                )
                db.add(workflow_model)
                db.flush()
                stored = self._to_domain(workflow_model)

            logger.info(f"Created workflow '{workflow.name}' with ID: {workflow.id}")
            return stored

        except SQLAlchemyError as e:
            logger.error(f"Database error while creating workflow: {str(e)}")
            raise StorageError(f"Failed to store workflow: {str(e)}", operation="create", table="workflows")

    def find_by_id(self, workflow_id: str) -> Optional[Workflow]:
        """Return the workflow with the given id, or None if it does not exist."""
        try:
            with session_scope(self._session_factory) as db:
                workflow_model = db.get(WorkflowModel, workflow_id)
                if workflow_model is None:
                    return None
                return self._to_domain(workflow_model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load workflow: {str(e)}", operation="find_by_id", table="workflows")

    def list(self, status: Optional[WorkflowStatus] = None) -> List[Workflow]:
        """List workflows, newest first, optionally filtered by status."""
        try:
            with session_scope(self._session_factory) as db:
                query = db.query(WorkflowModel)
                if status is not None:
                    query = query.filter(WorkflowModel.status == status.value)
                return [self._to_domain(model) for model in query.order_by(WorkflowModel.created_at.desc()).all()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list workflows: {str(e)}", operation="list", table="workflows")

    def update_status(self, workflow_id: str, status: WorkflowStatus) -> Workflow:
        """Change the lifecycle status of a workflow."""
        try:
            with session_scope(self._session_factory) as db:
                workflow_model = db.get(WorkflowModel, workflow_id)
                if workflow_model is None:
                    raise NotFoundError(f"Workflow not found: {workflow_id}",
                                        resource_type="workflow", resource_id=workflow_id)
                workflow_model.status = status.value
                workflow_model.updated_at = datetime.utcnow()
                db.flush()
                return self._to_domain(workflow_model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update workflow: {str(e)}", operation="update_status", table="workflows")

    def delete(self, workflow_id: str) -> bool:
        """Delete a workflow and its history. Returns False if it did not exist."""
        try:
            with session_scope(self._session_factory) as db:
                workflow_model = db.get(WorkflowModel, workflow_id)
                if workflow_model is None:
                    return False
                db.delete(workflow_model)
            logger.info(f"Deleted workflow {workflow_id}")
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete workflow: {str(e)}", operation="delete", table="workflows")

    @staticmethod
    def _to_domain(model: WorkflowModel) -> Workflow:
        return Workflow(
            id=model.id,
            name=model.name,
            description=model.description or "",
            status=WorkflowStatus(model.status),
            config=WorkflowConfig.model_validate(model.config or {}),
            nodes=[
                WorkflowNode(
                    id=node.node_id,
                    type=node.type,
                    agent_id=node.agent_id,
                    prompt_id=node.prompt_id,
                    config=node.config or {},
                    position=Position(x=node.position_x or 0, y=node.position_y or 0),
                )
                for node in model.nodes
            ],
            edges=[
                WorkflowEdge(
                    id=edge.edge_id,
                    source=edge.source,
                    target=edge.target,
                    condition=edge.condition,
                )
                for edge in model.edges
            ],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class WorkflowExecutionRepository:
    """Stores the lifecycle and results of workflow runs."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, workflow_id: str, input_data: Any, status: ExecutionStatusEnum) -> ExecutionRecord:
        """Allocate and persist a new execution record with a generated id."""
        execution_id = str(uuid.uuid4())
        try:
            with session_scope(self._session_factory) as db:
                execution_model = WorkflowExecutionModel(
                    id=execution_id,
                    workflow_id=workflow_id,
                    status=status.value,
                    input=to_json_column(input_data),
                    start_time=datetime.utcnow(),
                )
                db.add(execution_model)
                db.flush()
                record = self._to_domain(execution_model)

            logger.debug(f"Created execution record {execution_id} for workflow {workflow_id}")
            return record

        except SQLAlchemyError as e:
            logger.error(f"Database error while creating execution: {str(e)}")
            raise StorageError(f"Failed to create execution: {str(e)}",
                               operation="create", table="workflow_executions")

    def update(self, execution_id: str, updates: ExecutionUpdate) -> ExecutionRecord:
        """
        Apply the explicitly set fields of ``updates`` to an execution record.

        Raises:
            NotFoundError: If the execution does not exist
            StorageError: If the write fails
        """
        try:
            with session_scope(self._session_factory) as db:
                execution_model = db.get(WorkflowExecutionModel, execution_id)
                if execution_model is None:
                    raise NotFoundError(f"Execution not found: {execution_id}",
                                        resource_type="execution", resource_id=execution_id)

                for field_name in updates.model_fields_set:
                    value = getattr(updates, field_name)
                    if field_name == "status" and value is not None:
                        value = value.value
                    elif field_name == "errors" and value is not None:
                        value = [error.to_record() for error in value]
                    elif field_name in ("final_output", "node_results"):
                        value = to_json_column(value)
                    setattr(execution_model, field_name, value)

                db.flush()
                return self._to_domain(execution_model)

        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.error(f"Database error while updating execution {execution_id}: {str(e)}")
            raise StorageError(f"Failed to update execution: {str(e)}",
                               operation="update", table="workflow_executions")

    def find_by_id(self, execution_id: str) -> Optional[ExecutionRecord]:
        try:
            with session_scope(self._session_factory) as db:
                execution_model = db.get(WorkflowExecutionModel, execution_id)
                if execution_model is None:
                    return None
                return self._to_domain(execution_model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load execution: {str(e)}",
                               operation="find_by_id", table="workflow_executions")

    def list_by_workflow_id(self, workflow_id: str) -> List[ExecutionRecord]:
        """List the executions of one workflow, most recent first."""
        try:
            with session_scope(self._session_factory) as db:
                models = (
                    db.query(WorkflowExecutionModel)
                    .filter(WorkflowExecutionModel.workflow_id == workflow_id)
                    .order_by(WorkflowExecutionModel.start_time.desc())
                    .all()
                )
                return [self._to_domain(model) for model in models]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list executions: {str(e)}",
                               operation="list_by_workflow_id", table="workflow_executions")

    @staticmethod
    def _to_domain(model: WorkflowExecutionModel) -> ExecutionRecord:
        return ExecutionRecord(
            id=model.id,
            workflow_id=model.workflow_id,
            status=ExecutionStatusEnum(model.status),
            input=model.input,
            final_output=model.final_output,
            node_results=model.node_results,
            errors=model.errors,
            start_time=model.start_time,
            end_time=model.end_time,
        )


class AgentRepository:
    """Stores agent definitions."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, agent: Agent) -> Agent:
        try:
            with session_scope(self._session_factory) as db:
                if db.get(AgentModel, agent.id) is not None:
                    raise StorageError(f"Agent with ID '{agent.id}' already exists",
                                       operation="create", table="agents")
                agent_model = AgentModel(id=agent.id)
                self._apply(agent_model, agent)
                db.add(agent_model)
                db.flush()
                return self._to_domain(agent_model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to store agent: {str(e)}", operation="create", table="agents")

    def update(self, agent: Agent) -> Agent:
        try:
            with session_scope(self._session_factory) as db:
                agent_model = db.get(AgentModel, agent.id)
                if agent_model is None:
                    raise NotFoundError(f"Agent not found: {agent.id}",
                                        resource_type="agent", resource_id=agent.id)
                self._apply(agent_model, agent)
                agent_model.updated_at = datetime.utcnow()
                db.flush()
                return self._to_domain(agent_model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update agent: {str(e)}", operation="update", table="agents")

    def find_by_id(self, agent_id: str) -> Optional[Agent]:
        try:
            with session_scope(self._session_factory) as db:
                agent_model = db.get(AgentModel, agent_id)
                return self._to_domain(agent_model) if agent_model is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load agent: {str(e)}", operation="find_by_id", table="agents")

    def list(self, status: Optional[AgentStatus] = None) -> List[Agent]:
        try:
            with session_scope(self._session_factory) as db:
                query = db.query(AgentModel)
                if status is not None:
                    query = query.filter(AgentModel.status == status.value)
                return [self._to_domain(model) for model in query.order_by(AgentModel.created_at).all()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list agents: {str(e)}", operation="list", table="agents")

    def delete(self, agent_id: str) -> bool:
        try:
            with session_scope(self._session_factory) as db:
                agent_model = db.get(AgentModel, agent_id)
                if agent_model is None:
                    return False
                db.delete(agent_model)
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete agent: {str(e)}", operation="delete", table="agents")

    @staticmethod
    def _apply(model: AgentModel, agent: Agent) -> None:
        model.name = agent.name
        model.description = agent.description
        model.status = agent.status.value
        model.capabilities = [capability.model_dump(mode="json") for capability in agent.capabilities]
        model.config = agent.config.model_dump(mode="json")
        model.agent_metadata = agent.metadata

    @staticmethod
    def _to_domain(model: AgentModel) -> Agent:
        return Agent.model_validate({
            "id": model.id,
            "name": model.name,
            "description": model.description or "",
            "status": model.status,
            "capabilities": model.capabilities or [],
            "config": model.config or {},
            "metadata": model.agent_metadata or {},
        })


class PromptRepository:
    """Stores prompt templates and their version history.

    Every change of template goes through a version row; the prompt row
    mirrors the template and variables of its latest version.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, prompt: Prompt) -> Prompt:
        """Persist a new prompt as version 1."""
        try:
            with session_scope(self._session_factory) as db:
                if db.get(PromptModel, prompt.id) is not None:
                    raise StorageError(f"Prompt with ID '{prompt.id}' already exists",
                                       operation="create", table="prompts")
                variables = [variable.model_dump(mode="json") for variable in prompt.variables]
                prompt_model = PromptModel(
                    id=prompt.id,
                    name=prompt.name,
                    description=prompt.description,
                    category=prompt.category.value,
                    template=prompt.template,
                    variables=variables,
                    is_active=prompt.is_active,
                    tags=list(prompt.tags),
                    created_by=prompt.created_by,
                )
                prompt_model.versions.append(PromptVersionModel(
                    id=str(uuid.uuid4()),
                    version=1,
                    template=prompt.template,
                    variables=variables,
                    is_active=True,
                    created_by=prompt.created_by,
                ))
                db.add(prompt_model)
                db.flush()
                created = self._to_domain(prompt_model)

            logger.info(f"Created prompt {prompt.id}")
            return created

        except SQLAlchemyError as e:
            raise StorageError(f"Failed to store prompt: {str(e)}", operation="create", table="prompts")

    def find_by_id(self, prompt_id: str, version: Optional[int] = None) -> Optional[Prompt]:
        """Load a prompt, optionally with the template of an earlier version.

        Returns None if the prompt or the requested version does not exist.
        """
        try:
            with session_scope(self._session_factory) as db:
                prompt_model = db.get(PromptModel, prompt_id)
                if prompt_model is None:
                    return None
                if version is None:
                    return self._to_domain(prompt_model)

                version_model = self._get_version(prompt_model, version)
                return self._to_domain(prompt_model, version_model) if version_model is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load prompt: {str(e)}", operation="find_by_id", table="prompts")

    def list(
        self,
        category: Optional[PromptCategory] = None,
        is_active: Optional[bool] = None,
        tags: Optional[List[str]] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Prompt]:
        """List prompts, most recently updated first.

        ``tags`` matches prompts carrying every given tag; ``search`` matches
        name or description case-insensitively.
        """
        try:
            with session_scope(self._session_factory) as db:
                query = db.query(PromptModel)
                if category is not None:
                    query = query.filter(PromptModel.category == category.value)
                if is_active is not None:
                    query = query.filter(PromptModel.is_active == is_active)
                if search:
                    pattern = f"%{search}%"
                    query = query.filter(or_(PromptModel.name.ilike(pattern),
                                             PromptModel.description.ilike(pattern)))

                models = query.order_by(PromptModel.updated_at.desc()).all()
                if tags:
                    # JSON columns are not portably searchable
                    models = [model for model in models if set(tags) <= set(model.tags or [])]

                return [self._to_domain(model) for model in models[offset:offset + limit]]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list prompts: {str(e)}", operation="list", table="prompts")

    def update(self, prompt_id: str, updates: PromptUpdate, create_new_version: bool = False) -> Prompt:
        """
        Apply the explicitly set fields of ``updates``.

        With ``create_new_version`` the resulting template is stored as a new,
        active version and earlier versions are deactivated; otherwise the
        latest version is changed in place.

        Raises:
            NotFoundError: If the prompt does not exist
        """
        try:
            with session_scope(self._session_factory) as db:
                prompt_model = db.get(PromptModel, prompt_id)
                if prompt_model is None:
                    raise NotFoundError(f"Prompt not found: {prompt_id}",
                                        resource_type="prompt", resource_id=prompt_id)

                for field_name in updates.model_fields_set - {"created_by"}:
                    value = getattr(updates, field_name)
                    if value is None:
                        continue
                    if field_name == "category":
                        value = value.value
                    elif field_name == "variables":
                        value = [variable.model_dump(mode="json") for variable in value]
                    setattr(prompt_model, field_name, value)

                if create_new_version:
                    self._add_version(prompt_model, created_by=updates.created_by or prompt_model.created_by)
                else:
                    latest = prompt_model.versions[-1]
                    latest.template = prompt_model.template
                    latest.variables = prompt_model.variables

                prompt_model.updated_at = datetime.utcnow()
                db.flush()
                return self._to_domain(prompt_model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update prompt: {str(e)}", operation="update", table="prompts")

    def delete(self, prompt_id: str) -> bool:
        """Delete a prompt and its versions. Returns False if it did not exist."""
        try:
            with session_scope(self._session_factory) as db:
                prompt_model = db.get(PromptModel, prompt_id)
                if prompt_model is None:
                    return False
                db.delete(prompt_model)
            logger.info(f"Deleted prompt {prompt_id}")
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete prompt: {str(e)}", operation="delete", table="prompts")

    def get_versions(self, prompt_id: str) -> List[PromptVersion]:
        """Return every version of a prompt, newest first."""
        try:
            with session_scope(self._session_factory) as db:
                prompt_model = db.get(PromptModel, prompt_id)
                if prompt_model is None:
                    raise NotFoundError(f"Prompt not found: {prompt_id}",
                                        resource_type="prompt", resource_id=prompt_id)
                return [self._version_to_domain(version) for version in reversed(prompt_model.versions)]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load prompt versions: {str(e)}",
                               operation="get_versions", table="prompt_versions")

    def rollback(self, prompt_id: str, target_version: int) -> Prompt:
        """
        Restore the template of ``target_version`` as a new latest version.

        Raises:
            NotFoundError: If the prompt or the target version does not exist
        """
        try:
            with session_scope(self._session_factory) as db:
                prompt_model = db.get(PromptModel, prompt_id)
                if prompt_model is None:
                    raise NotFoundError(f"Prompt not found: {prompt_id}",
                                        resource_type="prompt", resource_id=prompt_id)

                target = self._get_version(prompt_model, target_version)
                if target is None:
                    raise NotFoundError(f"Prompt {prompt_id} has no version {target_version}",
                                        resource_type="prompt_version", resource_id=str(target_version))

                prompt_model.template = target.template
                prompt_model.variables = target.variables
                prompt_model.updated_at = datetime.utcnow()
                self._add_version(prompt_model, created_by=prompt_model.created_by,
                                  change_note=f"Rollback from version {target_version}")
                db.flush()
                restored = self._to_domain(prompt_model)

            logger.info(f"Rolled prompt {prompt_id} back to the template of version {target_version}")
            return restored

        except SQLAlchemyError as e:
            raise StorageError(f"Failed to roll back prompt: {str(e)}", operation="rollback", table="prompts")

    @staticmethod
    def _get_version(prompt_model: PromptModel, version: int) -> Optional[PromptVersionModel]:
        return next((row for row in prompt_model.versions if row.version == version), None)

    @staticmethod
    def _add_version(prompt_model: PromptModel, created_by: Optional[str],
                     change_note: Optional[str] = None) -> None:
        for row in prompt_model.versions:
            row.is_active = False
        prompt_model.versions.append(PromptVersionModel(
            id=str(uuid.uuid4()),
            version=prompt_model.versions[-1].version + 1 if prompt_model.versions else 1,
            template=prompt_model.template,
            variables=prompt_model.variables,
            is_active=True,
            created_by=created_by,
            change_note=change_note,
        ))

    @staticmethod
    def _version_to_domain(model: PromptVersionModel) -> PromptVersion:
        return PromptVersion.model_validate({
            "id": model.id,
            "prompt_id": model.prompt_id,
            "version": model.version,
            "template": model.template,
            "variables": model.variables or [],
            "is_active": bool(model.is_active),
            "created_at": model.created_at,
            "created_by": model.created_by,
            "change_note": model.change_note,
        })

    @staticmethod
    def _to_domain(model: PromptModel, version: Optional[PromptVersionModel] = None) -> Prompt:
        version = version or (model.versions[-1] if model.versions else None)
        return Prompt.model_validate({
            "id": model.id,
            "name": model.name,
            "description": model.description or "",
            "category": model.category,
            "template": version.template if version is not None else model.template,
            "variables": (version.variables if version is not None else model.variables) or [],
            "version": version.version if version is not None else 1,
            "is_active": bool(model.is_active),
            "tags": model.tags or [],
            "created_by": model.created_by,
            "created_at": model.created_at,
            "updated_at": model.updated_at,
        })
