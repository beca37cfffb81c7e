"""
Router - classify an input, then dispatch to exactly one branch.

The classifier is itself a workflow (usually an AugmentedCall). Its label
must name a registered branch; an unknown label is reported as
ROUTING_AMBIGUOUS unless a default branch was explicitly configured.
Branches are opaque workflows and may be any other component.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from .context import Context, StepResult
from .control import CancellationToken
from .errors import RoutingAmbiguous
from .logging_config import get_logger
from .validation import raise_for_validation, validate_router_config
from .workflow import Workflow, WorkflowBase, as_workflow

logger = get_logger("router")

DEFAULT_ROUTE = "__default__"


def default_label_parser(result: StepResult) -> str:
    return str(result.payload).strip()


@dataclass
class RouterConfig:
    """
    Configuration for Router.

    Attributes:
        classifier: Workflow producing the label
        branches: Mapping from label to branch workflow
        default: Optional fallback branch for unregistered labels
        label_parser: Extracts the label from the classifier result
        normalize_labels: Compare labels case-insensitively, ignoring
            surrounding whitespace
        input_key: Context key dispatch() stores the routed input under
    """
    classifier: Any = None
    branches: Mapping[str, Any] = field(default_factory=dict)
    default: Optional[Any] = None
    label_parser: Callable[[StepResult], str] = default_label_parser
    normalize_labels: bool = True
    input_key: str = "input"


class Router(WorkflowBase):
    """Classification-based dispatch to one of a closed set of branches."""

    component = "router"

    def __init__(self, config: RouterConfig, name: Optional[str] = None):
        super().__init__(name)
        raise_for_validation(validate_router_config(config), self.name)
        self.config = config
        self.classifier: Workflow = as_workflow(config.classifier)
        self.default: Optional[Workflow] = (
            as_workflow(config.default) if config.default is not None else None
        )
        self.branches: Dict[str, Workflow] = {}
        for label, branch in config.branches.items():
            key = self._normalize(label)
            if key in self.branches:
                raise ValueError(f"[{self.name}] duplicate branch label after normalization: {label!r}")
            self.branches[key] = as_workflow(branch, name=label)

    def _normalize(self, label: str) -> str:
        if self.config.normalize_labels:
            return label.strip().casefold()
        return label

    async def dispatch(
        self,
        input: Any,
        context: Optional[Context] = None,
        cancel: Optional[CancellationToken] = None
    ) -> StepResult:
        """Route `input`: it is appended to the context before classifying."""
        context = (context if context is not None else Context()).append(self.config.input_key, input)
        return await self.run(context, cancel)

    def resolve(self, label: str) -> Optional[Workflow]:
        """Branch for `label`, the default branch, or None."""
        branch = self.branches.get(self._normalize(label))
        if branch is None:
            return self.default
        return branch

    async def _run(self, context: Context, cancel: Optional[CancellationToken]) -> StepResult:
        classification = await self.classifier.run(context, cancel)
        if not classification.ok:
            logger.warning(f"[{self.name}] Classifier failed: {classification.reason}")
            return classification.with_metadata(stage="classify")

        label = self.config.label_parser(classification)
        branch = self.resolve(label)

        if branch is None:
            logger.warning(f"[{self.name}] Unregistered label {label!r}")
            raise RoutingAmbiguous(
                f"label {label!r} does not match any branch "
                f"({', '.join(sorted(self.branches)) or 'none'})",
                context=classification.context,
                label=label
            )

        route = self._normalize(label) if self._normalize(label) in self.branches else DEFAULT_ROUTE
        logger.info(f"[{self.name}] Routing {label!r} -> {route}")

        if cancel is not None:
            cancel.raise_if_cancelled()

        result = await branch.run(classification.context.append("routes", route), cancel)
        return result.with_metadata(route=route, label=label)
