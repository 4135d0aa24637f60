"""
Channel plumbing.

Concrete channels (chat apps, web, CLI front-ends) live outside this
package; they talk to the agent through the message bus.
"""

from .bus import InMemoryBus

__all__ = ["InMemoryBus"]
