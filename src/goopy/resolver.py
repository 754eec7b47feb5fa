import dataclasses
import typing

import networkx as nx

import goopy.errors
import goopy.logging
from goopy.models import pkg as pkg_models
from goopy.models import repo as repo_models
from goopy.models import spec as spec_models
from goopy.models import state as state_models


class Candidate(typing.NamedTuple):
    """
    A package offered by a repo.
    """

    repo_url: str
    priority: int
    repo_spec: spec_models.RepoSpec

    @property
    def spec(self) -> spec_models.PkgSpec:
        return self.repo_spec.package_spec

    @property
    def pkg_id(self) -> pkg_models.PkgId:
        return self.repo_spec.pkg_id


class Update(typing.NamedTuple):
    installed_version: str
    candidate: Candidate

    @property
    def pkg_id(self) -> pkg_models.PkgId:
        return self.candidate.pkg_id


def _candidates(
    name: str, arch: str, repo_map: repo_models.RepoMap
) -> typing.Iterator[Candidate]:
    for url, repo in repo_map.items():
        for repo_spec in repo.packages:
            spec = repo_spec.package_spec
            if spec.name == name and spec.arch in (arch, pkg_models.NOARCH):
                yield Candidate(url, repo.priority, repo_spec)


def _best(candidates: typing.Iterable[Candidate]) -> Candidate | None:
    """
    Highest priority first, then highest version, then smallest repo URL.
    """
    best: Candidate | None = None
    for candidate in sorted(candidates, key=lambda c: c.repo_url):
        if best is None or candidate.priority > best.priority:
            best = candidate
        elif (
            candidate.priority == best.priority
            and pkg_models.compare_versions(candidate.spec.version, best.spec.version) > 0
        ):
            best = candidate
    return best


def latest(name: str, arch: str, repo_map: repo_models.RepoMap) -> Candidate:
    """
    Select the version of name.arch to install.

    Only the highest priority repos offering the package are considered, so a
    high priority repo pins or rolls back a package whatever lower priority repos offer.
    noarch packages are candidates for every arch.
    """
    best = _best(_candidates(name, arch, repo_map))
    if best is None:
        raise goopy.errors.NoCandidate(f"no package named {name}.{arch} found in any repo")
    return best


def find_exact(pkg_id: pkg_models.PkgId, repo_map: repo_models.RepoMap) -> Candidate:
    best = _best(
        candidate
        for candidate in _candidates(pkg_id.name, pkg_id.arch, repo_map)
        if candidate.pkg_id == pkg_id
    )
    if best is None:
        raise goopy.errors.NoCandidate(f"{pkg_id} not found in any repo")
    return best


def updates(
    package_map: dict[str, str], repo_map: repo_models.RepoMap
) -> list[Update]:
    """
    Installed packages whose selected version differs from the installed one, upgrades
    and rollbacks alike.
    """
    result: list[Update] = []
    for key, installed_version in sorted(package_map.items()):
        name, arch = key.split(".", 1)
        try:
            candidate = latest(name, arch, repo_map)
        except goopy.errors.NoCandidate:
            goopy.logging.debug("%s is not offered by any repo", key)
            continue

        if candidate.spec.version != installed_version:
            result.append(Update(installed_version, candidate))
    return result


@dataclasses.dataclass
class PlanStep:
    action: typing.Literal["install", "reinstall", "remove"]
    pkg_id: pkg_models.PkgId
    candidate: Candidate | None = None
    state: state_models.PackageState | None = None

    def __str__(self) -> str:
        return f"{self.action} {self.pkg_id}"


@dataclasses.dataclass
class Plan:
    """
    Package operations in the order they must be applied.
    """

    steps: list[PlanStep] = dataclasses.field(default_factory=list)

    def __iter__(self) -> typing.Iterator[PlanStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def is_empty(self) -> bool:
        return len(self.steps) == 0

    @property
    def removals(self) -> list[PlanStep]:
        return [step for step in self.steps if step.action == "remove"]

    @property
    def installs(self) -> list[PlanStep]:
        return [step for step in self.steps if step.action != "remove"]


class Resolver:
    """
    Decides what to install and remove given the repos and the installed packages.
    """

    def __init__(
        self,
        repo_map: repo_models.RepoMap,
        installed: typing.Iterable[state_models.PackageState],
        archs: list[str],
    ) -> None:
        self.repo_map = repo_map
        self.installed = {state.key: state for state in installed}
        self.archs = archs

    def find(self, query: pkg_models.PkgQuery) -> Candidate:
        """
        Resolve what the user asked for. Without an arch the configured archs are tried in
        order; with a version that exact version must be offered.
        """
        if query.version is not None:
            if query.arch is None:
                raise goopy.errors.MalformedIdentifier(
                    f"{query} names a version without an arch, expecting name.arch.version"
                )
            return find_exact(
                pkg_models.PkgId(query.name, query.arch, query.version), self.repo_map
            )

        if query.arch is not None:
            return latest(query.name, query.arch, self.repo_map)

        for arch in self.archs:
            try:
                return latest(query.name, arch, self.repo_map)
            except goopy.errors.NoCandidate:
                continue
        raise goopy.errors.NoCandidate(f"no package named {query.name} found in any repo")

    def find_installed(self, query: pkg_models.PkgQuery) -> state_models.PackageState | None:
        if query.arch is not None:
            state = self.installed.get(f"{query.name}.{query.arch}")
            if state is None or (query.version is not None and state.version != query.version):
                return None
            return state

        for arch in (*self.archs, *pkg_models.VALID_ARCHS):
            state = self.installed.get(f"{query.name}.{arch}")
            if state is not None:
                return state
        return None

    def updates(self) -> list[Update]:
        return updates(state_models.package_map(self.installed.values()), self.repo_map)

    def _installed_satisfying(
        self, dep: spec_models.DependencyRequest, excluded: typing.Container[str] = ()
    ) -> state_models.PackageState | None:
        for key, state in sorted(self.installed.items()):
            if key not in excluded and dep.satisfied_by(state.pkg_id):
                return state
        return None

    def _candidate_for(self, dep: spec_models.DependencyRequest, dependent: str) -> Candidate:
        archs = [dep.arch]
        if dep.arch == pkg_models.NOARCH:
            archs += [arch for arch in self.archs if arch != pkg_models.NOARCH]

        for arch in archs:
            try:
                candidate = latest(dep.name, arch, self.repo_map)
            except goopy.errors.NoCandidate:
                continue
            if pkg_models.compare_versions(candidate.spec.version, dep.min_version) < 0:
                raise goopy.errors.UnsatisfiableDependency(
                    f"{dependent} requires {dep}, but the best available is {candidate.pkg_id}"
                )
            return candidate

        raise goopy.errors.UnsatisfiableDependency(
            f"{dependent} requires {dep}, which no repo offers"
        )

    def closure(self, targets: list[Candidate]) -> list[Candidate]:
        """
        The targets plus every dependency not already satisfied by an installed package,
        ordered so each package comes after its dependencies.
        """
        pending: dict[str, Candidate] = {}
        graph: nx.DiGraph[str] = nx.DiGraph()
        worklist: list[Candidate] = []
        for target in targets:
            if target.pkg_id.key not in pending:
                pending[target.pkg_id.key] = target
                graph.add_node(target.pkg_id.key)
                worklist.append(target)

        while len(worklist) > 0:
            current = worklist.pop(0)
            current_key = current.pkg_id.key
            for dep in current.spec.dependencies():
                scheduled = next(
                    (
                        candidate
                        for candidate in pending.values()
                        if candidate.spec.name == dep.name
                        and pkg_models.arch_compatible(candidate.spec.arch, dep.arch)
                    ),
                    None,
                )
                if scheduled is not None:
                    if not dep.satisfied_by(scheduled.pkg_id):
                        raise goopy.errors.UnsatisfiableDependency(
                            f"{current.pkg_id} requires {dep}, "
                            f"but {scheduled.pkg_id} is being installed"
                        )
                    if scheduled.pkg_id.key != current_key:
                        graph.add_edge(scheduled.pkg_id.key, current_key)
                    continue

                installed = self._installed_satisfying(dep)
                if installed is not None:
                    goopy.logging.debug(
                        "%s requires %s, satisfied by installed %s",
                        current.pkg_id,
                        dep,
                        installed.pkg_id,
                    )
                    continue

                candidate = self._candidate_for(dep, str(current.pkg_id))
                goopy.logging.debug(
                    "%s requires %s, selecting %s", current.pkg_id, dep, candidate.pkg_id
                )
                pending[candidate.pkg_id.key] = candidate
                graph.add_edge(candidate.pkg_id.key, current_key)
                worklist.append(candidate)

        try:
            order = list(nx.lexicographical_topological_sort(graph))
        except nx.NetworkXUnfeasible:
            cycle = nx.find_cycle(graph)
            raise goopy.errors.DependencyCycle(
                "dependency cycle: " + " -> ".join(edge[0] for edge in cycle)
            ) from None

        return [pending[key] for key in order]

    def _dependency_graph(self) -> "nx.DiGraph[str]":
        """
        Installed packages, with an edge from each package to the packages it depends on.
        """
        graph: nx.DiGraph[str] = nx.DiGraph()
        for key, state in self.installed.items():
            graph.add_node(key)
            for dep in state.package_spec.dependencies():
                for other_key, other in self.installed.items():
                    if (
                        other_key != key
                        and other.name == dep.name
                        and pkg_models.arch_compatible(other.package_spec.arch, dep.arch)
                    ):
                        graph.add_edge(key, other_key)
        return graph

    def _removal_order(self, keys: typing.Collection[str]) -> list[str]:
        """
        Dependents before the packages they depend on.
        """
        graph = self._dependency_graph().subgraph(keys)
        try:
            return list(nx.lexicographical_topological_sort(graph))
        except nx.NetworkXUnfeasible:
            goopy.logging.warning("Installed packages depend on each other, removing by name")
            return sorted(keys)

    def _replacements(self, closure: list[Candidate]) -> dict[str, str]:
        """
        installed key -> key of the closure member replacing it
        """
        closure_keys = {candidate.pkg_id.key for candidate in closure}
        replaced: dict[str, str] = {}
        for candidate in closure:
            patterns = candidate.spec.replace_patterns()
            if len(patterns) == 0:
                continue
            for key, state in sorted(self.installed.items()):
                if key in closure_keys or not any(p.matches(state.pkg_id) for p in patterns):
                    continue
                if any(p.matches(candidate.pkg_id) for p in state.package_spec.replace_patterns()):
                    raise goopy.errors.ReplacementCycle(
                        f"{candidate.pkg_id} and installed {state.pkg_id} replace each other"
                    )
                replaced[key] = candidate.pkg_id.key

        for candidate in closure:
            for other in closure:
                if other is candidate:
                    continue
                if any(p.matches(other.pkg_id) for p in candidate.spec.replace_patterns()) and any(
                    p.matches(candidate.pkg_id) for p in other.spec.replace_patterns()
                ):
                    raise goopy.errors.ReplacementCycle(
                        f"{candidate.pkg_id} and {other.pkg_id} replace each other"
                    )
        return replaced

    def _superseded(self, closure: list[Candidate]) -> set[str]:
        """
        Installed keys of closure members under another arch, e.g. foo.x86_64 when
        foo.noarch is being installed. Only one of them can own the package's files.
        """
        closure_keys = {candidate.pkg_id.key for candidate in closure}
        superseded: set[str] = set()
        for candidate in closure:
            for key, state in self.installed.items():
                if (
                    key not in closure_keys
                    and state.name == candidate.spec.name
                    and pkg_models.arch_compatible(state.package_spec.arch, candidate.spec.arch)
                ):
                    goopy.logging.info("%s is replaced by %s", state.pkg_id, candidate.pkg_id)
                    superseded.add(key)
        return superseded

    def _cascade(self, removed: set[str], closure: list[Candidate]) -> set[str]:
        """
        Grow removed with installed packages left with a dependency that nothing remaining
        or being installed satisfies.
        """
        closure_keys = {candidate.pkg_id.key for candidate in closure}
        removed = set(removed)
        changed = True
        while changed:
            changed = False
            for key, state in sorted(self.installed.items()):
                if key in removed or key in closure_keys:
                    continue
                for dep in state.package_spec.dependencies():
                    was_provided = any(
                        dep.satisfied_by(self.installed[r].pkg_id) for r in removed
                    )
                    if not was_provided:
                        continue
                    still_provided = self._installed_satisfying(dep, removed) is not None or any(
                        dep.satisfied_by(candidate.pkg_id) for candidate in closure
                    )
                    if not still_provided:
                        goopy.logging.info(
                            "%s depends on %s, which is being replaced; removing it too",
                            state.pkg_id,
                            dep,
                        )
                        removed.add(key)
                        changed = True
                        break
        return removed

    def _check_conflicts(self, closure: list[Candidate], removed: set[str]) -> None:
        closure_keys = {candidate.pkg_id.key for candidate in closure}
        remaining = [
            state.pkg_id
            for key, state in sorted(self.installed.items())
            if key not in removed and key not in closure_keys
        ]
        for candidate in closure:
            others = [*remaining, *(c.pkg_id for c in closure if c is not candidate)]
            for pattern in candidate.spec.conflict_patterns():
                for other in others:
                    if pattern.matches(other):
                        raise goopy.errors.PackageConflict(
                            f"{candidate.pkg_id} conflicts with {other}"
                        )
            for key, state in sorted(self.installed.items()):
                if key in removed or key in closure_keys:
                    continue
                if any(p.matches(candidate.pkg_id) for p in state.package_spec.conflict_patterns()):
                    raise goopy.errors.PackageConflict(
                        f"installed {state.pkg_id} conflicts with {candidate.pkg_id}"
                    )

    def plan_install(self, targets: list[Candidate]) -> Plan:
        """
        Plan installing targets: removals of replaced packages and their stranded
        dependents first, then installs in dependency order. Targets already installed at
        the selected version are left alone.
        """
        wanted: list[Candidate] = []
        for target in targets:
            state = self.installed.get(target.pkg_id.key)
            if state is not None and state.version == target.spec.version:
                goopy.logging.info("%s is already installed", target.pkg_id)
                continue
            wanted.append(target)

        if len(wanted) == 0:
            return Plan()

        closure = self.closure(wanted)
        replaced = self._replacements(closure)
        removed = self._cascade(set(replaced) | self._superseded(closure), closure)
        self._check_conflicts(closure, removed)

        steps = [
            PlanStep("remove", self.installed[key].pkg_id, state=self.installed[key])
            for key in self._removal_order(removed)
        ]
        steps += [
            PlanStep("install", candidate.pkg_id, candidate=candidate) for candidate in closure
        ]
        return Plan(steps)

    def plan_reinstall(self, state: state_models.PackageState) -> Plan:
        """
        Reinstall an installed package at its installed version. The repo copy is preferred
        when still offered; otherwise the recorded archive or download URL is used.
        """
        try:
            candidate = find_exact(state.pkg_id, self.repo_map)
        except goopy.errors.NoCandidate:
            candidate = None
        return Plan([PlanStep("reinstall", state.pkg_id, candidate=candidate, state=state)])

    def plan_remove(self, keys: list[str]) -> Plan:
        """
        Remove packages together with every installed package depending on them, directly
        or not. Dependents are removed first.
        """
        for key in keys:
            if key not in self.installed:
                raise goopy.errors.NotInstalled(f"{key} is not installed")

        reverse = self._dependency_graph().reverse(copy=True)
        removed: set[str] = set()
        for key in keys:
            removed.add(key)
            removed |= nx.descendants(reverse, key)

        return Plan(
            [
                PlanStep("remove", self.installed[key].pkg_id, state=self.installed[key])
                for key in self._removal_order(removed)
            ]
        )
