"""Planning and execution of agent tasks.

Import the executor from ``agent_engine.agent.executor``; it depends on the
task service, which itself uses the types defined here.
"""
