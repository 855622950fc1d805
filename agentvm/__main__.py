from agentvm.main import cli

cli()
