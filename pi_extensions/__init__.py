"""
pi extensions - subagent orchestration and handoff compaction for the pi agent.

Two extensions live here:

    1. subagent   - spawn isolated child agent processes, one task or a fleet of
                    up to eight, with bounded concurrency, live progress and
                    aggregated token/cost usage
    2. compaction - replace the default context compaction with a handoff-style
                    summary written by the current model

``pi_extensions.extension.register`` wires both into a host.
"""

__version__ = "0.1.0"
