"""AgentVM — provision NixOS and Arch Linux agent VMs."""

__version__ = "0.1.0"
