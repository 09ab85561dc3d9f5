"""
AgentFlow - Run text through a directed graph of language-model agents.

Agents transform the carried text one after another; conditional agents
pick the next step by matching keywords in their own output.
"""

__version__ = "1.0.0"
