"""FastAPI REST endpoints for workflows, executions, agents and prompts."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field, field_validator, model_validator

from ..core.agent_executor import AgentExecutor
from ..core.agent_registry import AgentRegistry
from ..core.exceptions import NotFoundError
from ..core.logging import get_logger
from ..core.prompt_service import PromptService
from ..core.workflow_engine import WorkflowEngine
from ..models.agent import Agent, AgentCapability, AgentConfig, AgentStatus
from ..models.core import (
    ExecutionContext,
    ExecutionRecord,
    ExecutionStatusEnum,
    NodeType,
    Position,
    Workflow,
    WorkflowConfig,
    WorkflowEdge,
    WorkflowNode,
    WorkflowStatus,
)
from ..models.prompt import (
    Prompt,
    PromptCategory,
    PromptUpdate,
    PromptVariable,
    PromptVersion,
    RenderedPrompt,
)
from ..storage.repositories import WorkflowExecutionRepository, WorkflowRepository

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["orchestrator"])


# Dependencies: components live on the application container built by the factory

def _get_container(request: Request):
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Application components not initialized"
        )
    return container


def get_workflow_engine(request: Request) -> WorkflowEngine:
    return _get_container(request).workflow_engine


def get_workflow_repository(request: Request) -> WorkflowRepository:
    return _get_container(request).workflow_repository


def get_execution_repository(request: Request) -> WorkflowExecutionRepository:
    return _get_container(request).execution_repository


def get_agent_registry(request: Request) -> AgentRegistry:
    return _get_container(request).agent_registry


def get_agent_executor(request: Request) -> AgentExecutor:
    return _get_container(request).agent_executor


def get_prompt_service(request: Request) -> PromptService:
    return _get_container(request).prompt_service


# Request/Response models

class NodeRequest(BaseModel):
    """Node of a workflow creation request."""
    id: str = Field(..., description="Node identifier, unique within the workflow")
    type: NodeType = Field(..., description="Node type")
    agent_id: Optional[str] = Field(None, description="Agent invoked by agent nodes")
    prompt_id: Optional[str] = Field(None, description="Prompt referenced by prompt nodes")
    config: Dict[str, Any] = Field(default_factory=dict, description="Node configuration")
    position: Position = Field(default_factory=Position, description="Layout position")

    @field_validator('id')
    @classmethod
    def validate_id(cls, node_id):
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()


class EdgeRequest(BaseModel):
    """Edge of a workflow creation request."""
    id: Optional[str] = Field(None, description="Edge identifier; generated when omitted")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    condition: Optional[Dict[str, Any]] = Field(None, description="Stored condition, never evaluated")


class CreateWorkflowRequest(BaseModel):
    """Request model for creating a workflow."""
    name: str = Field(..., max_length=255, description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    status: WorkflowStatus = Field(default=WorkflowStatus.DRAFT, description="Initial status")
    config: WorkflowConfig = Field(default_factory=WorkflowConfig, description="Execution settings")
    nodes: List[NodeRequest] = Field(default_factory=list, description="Workflow nodes")
    edges: List[EdgeRequest] = Field(default_factory=list, description="Workflow edges")

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    @model_validator(mode='after')
    def validate_graph_references(self):
        """Ensure node ids are unique and edges only reference declared nodes."""
        node_ids = [node.id for node in self.nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")

        known = set(node_ids)
        for edge in self.edges:
            if edge.source not in known:
                raise ValueError(f"Edge references non-existent source node: {edge.source}")
            if edge.target not in known:
                raise ValueError(f"Edge references non-existent target node: {edge.target}")
        return self

    def to_workflow(self) -> Workflow:
        return Workflow(
            id=str(uuid.uuid4()),
            name=self.name,
            description=self.description,
            status=self.status,
            config=self.config,
            nodes=[WorkflowNode(**node.model_dump()) for node in self.nodes],
            edges=[
                WorkflowEdge(
                    id=edge.id or str(uuid.uuid4()),
                    source=edge.source,
                    target=edge.target,
                    condition=edge.condition,
                )
                for edge in self.edges
            ],
        )


class UpdateWorkflowStatusRequest(BaseModel):
    status: WorkflowStatus = Field(..., description="New workflow status")


class ExecuteWorkflowRequest(BaseModel):
    """Request model for executing a workflow."""
    input: Any = Field(None, description="Input handed to every node of the workflow")


class ExecutionErrorResponse(BaseModel):
    node_id: str = Field(..., description="Failing node; empty for workflow-level errors")
    error_type: str
    message: str
    timestamp: datetime


class ExecutionResponse(BaseModel):
    """Snapshot of a finished execution."""
    workflow_id: str
    execution_id: str
    status: ExecutionStatusEnum
    current_node_id: Optional[str] = None
    results: Dict[str, Any] = Field(default_factory=dict)
    errors: List[ExecutionErrorResponse] = Field(default_factory=list)
    start_time: datetime
    end_time: Optional[datetime] = None

    @classmethod
    def from_context(cls, context: ExecutionContext) -> "ExecutionResponse":
        return cls(
            workflow_id=context.workflow_id,
            execution_id=context.execution_id,
            status=context.status,
            current_node_id=context.current_node_id,
            results=context.results,
            errors=[
                ExecutionErrorResponse(
                    node_id=error.node_id,
                    error_type=type(error.error).__name__,
                    message=error.message,
                    timestamp=error.timestamp,
                )
                for error in context.errors
            ],
            start_time=context.start_time,
            end_time=context.end_time,
        )


class CreateAgentRequest(BaseModel):
    """Request model for registering an agent."""
    id: Optional[str] = Field(None, description="Agent identifier; generated when omitted")
    name: str = Field(..., min_length=1, max_length=255, description="Agent name")
    description: str = Field(default="", description="Agent description, part of its system prompt")
    capabilities: List[AgentCapability] = Field(default_factory=list)
    status: AgentStatus = Field(default=AgentStatus.IDLE)
    config: AgentConfig = Field(default_factory=AgentConfig)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_agent(self) -> Agent:
        return Agent(id=self.id or str(uuid.uuid4()), **self.model_dump(exclude={"id"}))


class InvokeAgentRequest(BaseModel):
    input: Any = Field(None, description="Input turned into the user message")
    context: Dict[str, Any] = Field(default_factory=dict, description="Invocation context")


class InvokeAgentResponse(BaseModel):
    agent_id: str
    success: bool
    output: Any = None
    error: Optional[str] = None
    tokens_used: Optional[int] = None
    latency_ms: int


class AgentStatsResponse(BaseModel):
    total_agents: int
    by_status: Dict[str, int]
    cached_agents: int
    active_invocations: int


class CreatePromptRequest(BaseModel):
    """Request model for creating a prompt template."""
    id: Optional[str] = Field(None, description="Prompt identifier; generated when omitted")
    name: str = Field(..., min_length=1, max_length=255, description="Prompt name")
    description: str = Field(default="", description="Prompt description")
    category: PromptCategory = Field(..., description="Prompt category")
    template: str = Field(..., min_length=1, description="Jinja2 template text")
    variables: List[PromptVariable] = Field(default_factory=list, description="Declared template variables")
    is_active: bool = Field(default=True)
    tags: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None

    @model_validator(mode='after')
    def validate_unique_variables(self):
        names = [variable.name for variable in self.variables]
        if len(names) != len(set(names)):
            raise ValueError("Variable names must be unique")
        return self

    def to_prompt(self) -> Prompt:
        return Prompt(id=self.id or str(uuid.uuid4()), **self.model_dump(exclude={"id"}))


class RenderPromptRequest(BaseModel):
    variables: Dict[str, Any] = Field(default_factory=dict, description="Template variable values")
    version: Optional[int] = Field(None, ge=1, description="Render an earlier version")


# Workflow endpoints

@router.post(
    "/workflows",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow"
)
def create_workflow(
    request: CreateWorkflowRequest,
    workflow_repository: WorkflowRepository = Depends(get_workflow_repository)
) -> Workflow:
    logger.info(f"Creating new workflow: {request.name}")
    return workflow_repository.create(request.to_workflow())


@router.get("/workflows", response_model=List[Workflow], summary="List workflows")
def list_workflows(
    status_filter: Optional[WorkflowStatus] = None,
    workflow_repository: WorkflowRepository = Depends(get_workflow_repository)
) -> List[Workflow]:
    return workflow_repository.list(status=status_filter)


@router.get("/workflows/{workflow_id}", response_model=Workflow, summary="Get a workflow")
def get_workflow(
    workflow_id: str,
    workflow_repository: WorkflowRepository = Depends(get_workflow_repository)
) -> Workflow:
    workflow = workflow_repository.find_by_id(workflow_id)
    if workflow is None:
        raise NotFoundError(f"Workflow not found: {workflow_id}",
                            resource_type="workflow", resource_id=workflow_id)
    return workflow


@router.patch("/workflows/{workflow_id}/status", response_model=Workflow, summary="Change workflow status")
def update_workflow_status(
    workflow_id: str,
    request: UpdateWorkflowStatusRequest,
    workflow_repository: WorkflowRepository = Depends(get_workflow_repository)
) -> Workflow:
    return workflow_repository.update_status(workflow_id, request.status)


@router.delete("/workflows/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a workflow")
def delete_workflow(
    workflow_id: str,
    workflow_repository: WorkflowRepository = Depends(get_workflow_repository)
) -> Response:
    if not workflow_repository.delete(workflow_id):
        raise NotFoundError(f"Workflow not found: {workflow_id}",
                            resource_type="workflow", resource_id=workflow_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=ExecutionResponse,
    summary="Execute a workflow",
    description="Run the workflow to completion and return the terminal execution state"
)
def execute_workflow(
    workflow_id: str,
    request: ExecuteWorkflowRequest,
    workflow_engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ExecutionResponse:
    logger.info(f"Starting workflow execution for workflow: {workflow_id}")
    context = workflow_engine.start_execution(workflow_id, request.input)
    return ExecutionResponse.from_context(context)


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[ExecutionRecord],
    summary="List the executions of a workflow"
)
def list_executions(
    workflow_id: str,
    execution_repository: WorkflowExecutionRepository = Depends(get_execution_repository)
) -> List[ExecutionRecord]:
    return execution_repository.list_by_workflow_id(workflow_id)


@router.get("/executions/{execution_id}", response_model=ExecutionRecord, summary="Get an execution")
def get_execution(
    execution_id: str,
    execution_repository: WorkflowExecutionRepository = Depends(get_execution_repository)
) -> ExecutionRecord:
    execution = execution_repository.find_by_id(execution_id)
    if execution is None:
        raise NotFoundError(f"Execution not found: {execution_id}",
                            resource_type="execution", resource_id=execution_id)
    return execution


# Agent endpoints

@router.post("/agents", response_model=Agent, status_code=status.HTTP_201_CREATED, summary="Register an agent")
def create_agent(
    request: CreateAgentRequest,
    agent_registry: AgentRegistry = Depends(get_agent_registry)
) -> Agent:
    return agent_registry.register_agent(request.to_agent())


@router.get("/agents", response_model=List[Agent], summary="List agents")
def list_agents(
    status_filter: Optional[AgentStatus] = None,
    agent_registry: AgentRegistry = Depends(get_agent_registry)
) -> List[Agent]:
    return agent_registry.list_agents(status=status_filter)


@router.get("/agents/stats", response_model=AgentStatsResponse, summary="Agent registry statistics")
def get_agent_stats(
    agent_registry: AgentRegistry = Depends(get_agent_registry),
    agent_executor: AgentExecutor = Depends(get_agent_executor)
) -> AgentStatsResponse:
    return AgentStatsResponse(
        **agent_registry.get_registry_stats(),
        active_invocations=agent_executor.get_total_active_tasks(),
    )


@router.get("/agents/{agent_id}", response_model=Agent, summary="Get an agent")
def get_agent(
    agent_id: str,
    agent_registry: AgentRegistry = Depends(get_agent_registry),
    agent_executor: AgentExecutor = Depends(get_agent_executor)
) -> Agent:
    agent = agent_registry.get_agent(agent_id)
    if agent is None:
        raise NotFoundError(f"Agent not found: {agent_id}", resource_type="agent", resource_id=agent_id)
    return agent.model_copy(update={"status": agent_executor.get_effective_status(agent)})


@router.delete("/agents/{agent_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Unregister an agent")
def delete_agent(
    agent_id: str,
    agent_registry: AgentRegistry = Depends(get_agent_registry)
) -> Response:
    if not agent_registry.unregister_agent(agent_id):
        raise NotFoundError(f"Agent not found: {agent_id}", resource_type="agent", resource_id=agent_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/agents/{agent_id}/invoke", response_model=InvokeAgentResponse, summary="Invoke an agent")
def invoke_agent(
    agent_id: str,
    request: InvokeAgentRequest,
    agent_executor: AgentExecutor = Depends(get_agent_executor)
) -> InvokeAgentResponse:
    result = agent_executor.invoke_agent(agent_id, request.input, request.context)
    return InvokeAgentResponse(
        agent_id=result.agent_id,
        success=result.success,
        output=result.output,
        error=str(result.error) if result.error else None,
        tokens_used=result.tokens_used,
        latency_ms=result.latency_ms,
    )


# Prompt endpoints

@router.post("/prompts", response_model=Prompt, status_code=status.HTTP_201_CREATED, summary="Create a prompt")
def create_prompt(
    request: CreatePromptRequest,
    prompt_service: PromptService = Depends(get_prompt_service)
) -> Prompt:
    logger.info(f"Creating new prompt: {request.name}")
    return prompt_service.create(request.to_prompt())


@router.get("/prompts", response_model=List[Prompt], summary="List prompts")
def list_prompts(
    category: Optional[PromptCategory] = None,
    is_active: Optional[bool] = None,
    tags: Optional[str] = Query(None, description="Comma-separated tags a prompt must all carry"),
    search: Optional[str] = Query(None, description="Substring of the name or description"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    prompt_service: PromptService = Depends(get_prompt_service)
) -> List[Prompt]:
    return prompt_service.list(
        category=category,
        is_active=is_active,
        tags=[tag.strip() for tag in tags.split(",") if tag.strip()] if tags else None,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/prompts/{prompt_id}", response_model=Prompt, summary="Get a prompt")
def get_prompt(
    prompt_id: str,
    version: Optional[int] = Query(None, ge=1, description="Return an earlier version"),
    prompt_service: PromptService = Depends(get_prompt_service)
) -> Prompt:
    return prompt_service.get(prompt_id, version)


@router.put("/prompts/{prompt_id}", response_model=Prompt, summary="Update a prompt")
def update_prompt(
    prompt_id: str,
    request: PromptUpdate,
    create_version: bool = Query(False, description="Store the result as a new version"),
    prompt_service: PromptService = Depends(get_prompt_service)
) -> Prompt:
    return prompt_service.update(prompt_id, request, create_new_version=create_version)


@router.delete("/prompts/{prompt_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a prompt")
def delete_prompt(
    prompt_id: str,
    prompt_service: PromptService = Depends(get_prompt_service)
) -> Response:
    prompt_service.delete(prompt_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/prompts/{prompt_id}/versions", response_model=List[PromptVersion], summary="List prompt versions")
def list_prompt_versions(
    prompt_id: str,
    prompt_service: PromptService = Depends(get_prompt_service)
) -> List[PromptVersion]:
    return prompt_service.get_versions(prompt_id)


@router.post("/prompts/{prompt_id}/rollback/{version}", response_model=Prompt, summary="Roll a prompt back")
def rollback_prompt(
    prompt_id: str,
    version: int,
    prompt_service: PromptService = Depends(get_prompt_service)
) -> Prompt:
    return prompt_service.rollback(prompt_id, version)


@router.post("/prompts/{prompt_id}/render", response_model=RenderedPrompt, summary="Render a prompt")
def render_prompt(
    prompt_id: str,
    request: RenderPromptRequest,
    prompt_service: PromptService = Depends(get_prompt_service)
) -> RenderedPrompt:
    return prompt_service.render(prompt_id, request.variables, request.version)
