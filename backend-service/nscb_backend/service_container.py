from __future__ import annotations

from dataclasses import dataclass, field

from .config import Settings
from .events import EventJournal
from .merge_runner import MergeRunner
from .nscb_runner import NscbRunner
from .runner import ToolRunner
from .runtime_config import RuntimeConfigStore


@dataclass
class Services:
    settings: Settings
    runtime_config: RuntimeConfigStore
    journal: EventJournal
    nscb: NscbRunner
    merge: MergeRunner
    runners: dict[str, ToolRunner] = field(default_factory=dict)

    def set_tools_directory(self, tools_dir: str | None) -> None:
        for runner in self.runners.values():
            runner.set_tools_directory(tools_dir)


def build_services(settings: Settings) -> Services:
    runtime_config = RuntimeConfigStore(settings)
    tools_dir = runtime_config.get().tools_dir or settings.tools_dir
    journal = EventJournal(max_events=settings.event_journal_size)
    nscb = NscbRunner(tools_dir, settings=settings, exe_name=settings.nscb_exe_name)
    merge = MergeRunner(tools_dir, settings=settings, exe_name=settings.squirrel_exe_name)

    services = Services(
        settings=settings,
        runtime_config=runtime_config,
        journal=journal,
        nscb=nscb,
        merge=merge,
        runners={nscb.name: nscb, merge.name: merge},
    )
    for name, runner in services.runners.items():
        journal.attach(name, runner)
    return services
