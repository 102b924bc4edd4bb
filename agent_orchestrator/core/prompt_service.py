"""Prompt template management and rendering."""

from typing import Any, Dict, List, Optional

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError

from ..models.prompt import Prompt, PromptUpdate, PromptVersion, RenderedPrompt
from ..storage.repositories import PromptRepository
from .exceptions import NotFoundError, PromptRenderError
from .logging import get_logger

logger = get_logger(__name__)


class PromptService:
    """CRUD over prompt templates plus Jinja2 rendering.

    Templates use Jinja2 syntax (``{{ topic }}``). Declared variables fill in
    their defaults; a required variable without a value, or any name the
    template uses but the caller did not supply, fails the render.
    """

    def __init__(self, prompt_repository: PromptRepository):
        self.prompt_repository = prompt_repository
        self.env = Environment(loader=BaseLoader(), undefined=StrictUndefined, autoescape=False)

    def create(self, prompt: Prompt) -> Prompt:
        self.validate_template(prompt.template)
        return self.prompt_repository.create(prompt)

    def get(self, prompt_id: str, version: Optional[int] = None) -> Prompt:
        prompt = self.prompt_repository.find_by_id(prompt_id, version)
        if prompt is None:
            suffix = f" (version {version})" if version is not None else ""
            raise NotFoundError(f"Prompt not found: {prompt_id}{suffix}",
                                resource_type="prompt", resource_id=prompt_id)
        return prompt

    def list(self, **filters) -> List[Prompt]:
        return self.prompt_repository.list(**filters)

    def update(self, prompt_id: str, updates: PromptUpdate, create_new_version: bool = False) -> Prompt:
        if updates.template is not None:
            self.validate_template(updates.template)
        return self.prompt_repository.update(prompt_id, updates, create_new_version)

    def delete(self, prompt_id: str) -> None:
        if not self.prompt_repository.delete(prompt_id):
            raise NotFoundError(f"Prompt not found: {prompt_id}",
                                resource_type="prompt", resource_id=prompt_id)

    def get_versions(self, prompt_id: str) -> List[PromptVersion]:
        return self.prompt_repository.get_versions(prompt_id)

    def rollback(self, prompt_id: str, target_version: int) -> Prompt:
        return self.prompt_repository.rollback(prompt_id, target_version)

    def validate_template(self, template: str) -> None:
        """Raise ``PromptRenderError`` if the template does not parse."""
        try:
            self.env.parse(template)
        except TemplateError as e:
            raise PromptRenderError(f"Invalid prompt template: {str(e)}")

    def render(self, prompt_id: str, variables: Dict[str, Any], version: Optional[int] = None) -> RenderedPrompt:
        """
        Render a prompt, optionally at an earlier version.

        Raises:
            NotFoundError: If the prompt or version does not exist
            PromptRenderError: If a required variable is missing or rendering fails
        """
        prompt = self.get(prompt_id, version)

        values = dict(variables)
        missing = []
        for variable in prompt.variables:
            if variable.name in values:
                continue
            if variable.default_value is not None:
                values[variable.name] = variable.default_value
            elif variable.required:
                missing.append(variable.name)

        if missing:
            raise PromptRenderError(
                f"Missing required variables: {', '.join(missing)}",
                prompt_id=prompt_id, missing_variables=missing
            )

        try:
            rendered_text = self.env.from_string(prompt.template).render(**values)
        except TemplateError as e:
            raise PromptRenderError(f"Failed to render prompt {prompt_id}: {str(e)}", prompt_id=prompt_id)

        logger.debug(f"Rendered prompt {prompt_id} version {prompt.version}")
        return RenderedPrompt(
            template=prompt.template,
            variables=values,
            rendered_text=rendered_text,
            version=prompt.version,
        )
