"""Deploy workflow documents.

A workflow is a YAML (or JSON) document listing shell steps and the steps
they depend on::

    version: "1"
    steps:
      - name: namespace
        command: kubectl apply -f 001_namespace.yml
      - name: web
        command: kubectl apply -f 002_web.yml
        depends_on: [namespace]
        timeout: 2m
        probe:
          command: kubectl rollout status deployment/web
          timeout: 5m
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Union

import networkx as nx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import WorkflowError

_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION = re.compile(r"(?:\d+(?:\.\d+)?(?:ms|s|m|h))+")


def parse_duration(value: Union[None, int, float, str]) -> Optional[float]:
    """Seconds for ``value``: a number of seconds or a duration such as ``30s``, ``5m`` or ``1h30m``."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            if not _DURATION.fullmatch(text):
                raise ValueError(f"invalid duration {value!r}") from None
            seconds = sum(float(n) * _UNITS[unit] for n, unit in _DURATION_PART.findall(text))
    if seconds <= 0:
        raise ValueError(f"duration must be positive, got {value!r}")
    return seconds


class _WorkflowModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Probe(_WorkflowModel):
    command: str
    timeout: Optional[float] = None

    @field_validator("timeout", mode="before")
    @classmethod
    def _duration(cls, v):
        return parse_duration(v)


class Step(_WorkflowModel):
    name: str
    command: str
    workdir: Optional[str] = None
    env: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    timeout: Optional[float] = None
    continue_on_fail: bool = False
    show_command: bool = False
    disabled: bool = False
    probe: Optional[Probe] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timeout", mode="before")
    @classmethod
    def _duration(cls, v):
        return parse_duration(v)

    @field_validator("env", mode="before")
    @classmethod
    def _env(cls, v):
        if v is None:
            return []
        if isinstance(v, dict):
            return [f"{k}={val}" for k, val in v.items()]
        return v

    @field_validator("depends_on", mode="before")
    @classmethod
    def _depends_on(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    def environment(self) -> Dict[str, str]:
        """The step's ``env`` entries as a mapping; entries without ``=`` map to an empty value."""
        result: Dict[str, str] = {}
        for item in self.env:
            key, _, value = item.partition("=")
            result[key] = value
        return result


class Workflow(_WorkflowModel):
    version: str = "1"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    steps: List[Step] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def _version(cls, v):
        return "1" if v is None else str(v)

    @field_validator("steps", mode="before")
    @classmethod
    def _steps(cls, v):
        return [] if v is None else v

    def step(self, name: str) -> Step:
        for s in self.steps:
            if s.name == name:
                return s
        raise KeyError(name)

    def graph(self) -> nx.DiGraph:
        """Dependency graph with an edge from each dependency to its dependent step."""
        graph = nx.DiGraph()
        for s in self.steps:
            graph.add_node(s.name)
            for dep in s.depends_on:
                graph.add_edge(dep, s.name)
        return graph

    def validate_steps(self) -> None:
        """Check step names are unique, dependencies exist and there are no cycles.

        Raises:
            WorkflowError: The first problem found.
        """
        seen = set()
        for s in self.steps:
            if s.name in seen:
                raise WorkflowError(f"duplicate step name '{s.name}'")
            seen.add(s.name)
        for s in self.steps:
            for dep in s.depends_on:
                if dep not in seen:
                    raise WorkflowError(f"step '{s.name}' depends on unknown step '{dep}'")
        graph = self.graph()
        if not nx.is_directed_acyclic_graph(graph):
            edges = nx.find_cycle(graph)
            cycle = " -> ".join([edges[0][0]] + [target for _, target in edges])
            raise WorkflowError(f"workflow has a dependency cycle: {cycle}")


def load_workflow(source: Union[str, bytes]) -> Workflow:
    """Parse and validate a workflow document (YAML or JSON)."""
    if isinstance(source, bytes):
        source = source.decode("utf-8")
    try:
        data = yaml.safe_load(source)
    except yaml.YAMLError as e:
        raise WorkflowError(f"unable to parse workflow: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise WorkflowError("workflow must be a mapping with a 'steps' list")
    try:
        workflow = Workflow.model_validate(data)
    except ValidationError as e:
        raise WorkflowError(f"invalid workflow: {e}") from e
    workflow.validate_steps()
    return workflow
