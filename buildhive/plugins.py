"""
This module implements the plugin contract.

Plugin modules need to be registered using the `buildhive` entrypoint group.
Modules that are registered as such can implement any of the functions:

    def priority():
        return {"executionStrategy": 100, "hostSelector": 10}

    def executionStrategy(name, config):
        # Return an ExecutionStrategy for the strategy name configured in
        # [executor] strategy, e.g. a containerized runner.
        return MyStrategy(config)

    def hostSelector(name):
        # Return a HostSelector for the name configured in
        # [assigner] host policy.
        return MySelector()

All of these functions are optional. If the plugin does not provide the
requested name then it should raise NotImplementedError so that the next
plugin at a possibly lower priority will get called instead. Names no plugin
claims fall back to the built-in strategies and selectors.
"""
from importlib import metadata
import logging
from operator import attrgetter
from typing import List

from .config import ConfigError
from .service_layer.selection import BUILTIN_SELECTORS, HostSelector
from .strategies import ExecutionStrategy, RemoteAgentStrategy, SimulatedStrategy

logger = logging.getLogger(__name__)
PRIO_LOWEST = 1 << 31
PRIO_HIGHEST = 0
ENTRY_POINT_GROUP = "buildhive"


def get_plugins(group: str) -> List[metadata.EntryPoint]:
    eps = metadata.entry_points()
    if not hasattr(eps, 'get'):
        # in 3.12+, EntryPoints.get() should be replaced by select().
        return list(eps.select(group=group))
    return list(eps.get(group, []))


def builtinStrategy(name, config) -> ExecutionStrategy:
    if name == SimulatedStrategy.name:
        return SimulatedStrategy(
            duration_ms=config.durationMs, success_rate=config.successRate)
    if name == RemoteAgentStrategy.name:
        return RemoteAgentStrategy(
            config.remoteUrlTemplate, timeout=config.remoteTimeout)
    raise ConfigError("Unknown execution strategy {!r}".format(name))


def builtinSelector(name) -> HostSelector:
    if name not in BUILTIN_SELECTORS:
        raise ConfigError("Unknown host policy {!r}.  Built-in policies: {}".format(
            name, ", ".join(sorted(BUILTIN_SELECTORS))))
    return BUILTIN_SELECTORS[name]()


class Plugins(object):
    def __init__(self):
        plugins = {plug.load() for plug in get_plugins(ENTRY_POINT_GROUP)}
        self.plugins = list(sorted(plugins, key=attrgetter("__name__")))
        logger.debug("all plugins: %r", [p.__name__ for p in self.plugins])
        self._prio = {}
        for plugin in self.plugins:
            if hasattr(plugin, "priority"):
                self._prio[plugin.__name__] = plugin.priority()

    def _pluginCalls(self, func, *args, **kwargs):
        prio = {}
        for plugin in self.plugins:
            if hasattr(plugin, func):
                pluginPrioMap = self._prio.get(plugin.__name__, {})
                pval = pluginPrioMap.get(func, pluginPrioMap.get("", PRIO_LOWEST))
                prio.setdefault(pval, []).append(plugin)

        if not prio:
            return

        for prio, plugins in sorted(prio.items()):
            for plugin in plugins:
                name = plugin.__name__
                try:
                    result = getattr(plugin, func)(*args, **kwargs)
                    logger.debug("%r: yield plugin %s => %r", prio, name, result)
                    yield result
                except NotImplementedError:
                    logger.debug("%r: plugin %s NotImplementedError", prio, name)
                    continue

    def executionStrategy(self, name, config) -> ExecutionStrategy:
        for ret in self._pluginCalls("executionStrategy", name, config):
            if ret is not None:
                return ret
        return builtinStrategy(name, config)

    def hostSelector(self, name) -> HostSelector:
        for ret in self._pluginCalls("hostSelector", name):
            if ret is not None:
                return ret
        return builtinSelector(name)
