import platform
from typing import Any, Dict, Optional

from nornir.core import Nornir
from nornir.core.inventory import Defaults, Groups, Host, Hosts, Inventory
from nornir.core.task import AggregatedResult
from nornir.plugins.runners import SerialRunner
from rich.markup import escape
from rich.panel import Panel

from arcboard.core.models import TaskStatus, StandardResult
from arcboard.core.registry import TASK_REGISTRY, TROUBLESHOOTING
from arcboard.core.settings import AppSettings
from arcboard.utils.logger import sys_logger, logger

console = logger.console

LOCAL_PLATFORM = "windows_local"


class LocalEngine:
    """
    Runs a goal's task chain, in order, against the machine it runs on.
    The first failed task stops the chain: no rollback, no resumption.
    """

    def __init__(self, settings: AppSettings, host_name: Optional[str] = None):
        self.settings = settings
        self.host_name = host_name or platform.node() or "localhost"
        self.nr = self._initialize()

    def _initialize(self) -> Nornir:
        """Single-host inventory with the settings injected as host data."""
        host = Host(
            name=self.host_name,
            hostname="localhost",
            platform=LOCAL_PLATFORM,
            data={"app_config": self.settings},
        )
        inventory = Inventory(hosts=Hosts({host.name: host}), groups=Groups(), defaults=Defaults())
        return Nornir(inventory=inventory, runner=SerialRunner())

    @property
    def host(self) -> Host:
        return self.nr.inventory.hosts[self.host_name]

    def run(self, goal: str, task_params: Optional[Dict[str, Dict[str, Any]]] = None) -> int:
        """
        Executes the pipeline for the specified goal.
        Returns the process exit code: 0 on success, 1 on any failure.
        """
        if goal not in TASK_REGISTRY:
            console.print(f"[bold red]⛔ Goal '{goal}' not defined in Registry.[/bold red]")
            return 1

        task_params = task_params or {}
        sys_logger.info(f"===== START goal='{goal}' host='{self.host_name}' =====")

        with logger.workflow(goal.title()):
            for task_func in TASK_REGISTRY[goal]:
                task_name = task_func.__name__

                with logger.task(task_name):
                    agg_result = self.nr.run(task=task_func, name=task_name, **task_params.get(task_name, {}))
                    failed = self._handle_results(agg_result)

                if failed:
                    sys_logger.error(f"===== ABORTED goal='{goal}' at task='{task_name}' =====")
                    self._print_troubleshooting(goal)
                    return 1

        sys_logger.info(f"===== FINISH goal='{goal}' host='{self.host_name}' =====")
        return 0

    def _handle_results(self, agg_result: AggregatedResult) -> bool:
        """
        Prints each host's outcome and decides whether to stop.
        Returns True on a critical failure.
        """
        has_critical_failure = False

        for host, multi_res in agg_result.items():
            task_result = multi_res[0]
            payload = task_result.result

            # Fallback if the task did not return a StandardResult
            if isinstance(payload, StandardResult):
                status, msg = payload.status, payload.message
            else:
                status, msg = TaskStatus.OK, str(payload)

            if task_result.failed:
                status = TaskStatus.FAILED
                has_critical_failure = True

            logger.log_status(status.value, msg)

        return has_critical_failure

    def _print_troubleshooting(self, goal: str):
        checklist = TROUBLESHOOTING.get(goal)
        if not checklist:
            return

        log_dir = self.settings.paths.log_dir
        body = "\n".join(f"[ ] {escape(item)}" for item in checklist)
        body += f"\n\nLogs: {escape(log_dir)}"
        console.print(Panel(body, title="Troubleshooting", border_style="red"))
