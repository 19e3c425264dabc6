"""CrewSim - in-memory multi-agent crew orchestration simulator.

Routes user messages to mocked specialist agents, queues and reviews their
work, and plays the resulting pipeline back as a cancelable sequence of
timed steps. No real model inference happens anywhere in the package.
"""

__version__ = "0.1.0"
