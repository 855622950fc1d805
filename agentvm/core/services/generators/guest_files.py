"""
Guest file generators — everything the Arch guest stage installs.

Scripts, systemd units and config files all render from the constants
below; nothing is copied from a checkout on the host, so the guest
stage works the same from any directory.
"""

from __future__ import annotations

from agentvm.core.models.template import GeneratedFile
from agentvm.core.models.variant import VariantConfig

INSTALL_DIR = "/opt/agentvm"
VENV_DIR = f"{INSTALL_DIR}/venv"
UNIT_DIR = "/etc/systemd/system"

API_UNIT = "agent-api.service"
CLEANUP_SERVICE = "cleanup-recordings.service"
CLEANUP_TIMER = "cleanup-recordings.timer"
SSHD_DROP_IN = "/etc/ssh/sshd_config.d/50-agentvm.conf"

RECORDING_RETENTION_DAYS = 30


def api_dir(config: VariantConfig) -> str:
    return f"/home/{config.ssh_user}/agent-api"


# ── Agent API ───────────────────────────────────────────────────

_API_START = """\
#!/usr/bin/env bash
set -euo pipefail

source {venv}/bin/activate

export PYTHONPATH={api_dir}
export AGENT_ENV=production

exec uvicorn main:app --host 0.0.0.0 --port {port} --no-access-log --workers 4
"""

_API_UNIT = """\
[Unit]
Description=Oligarchy AgentVM API Service
Documentation=https://github.com/ALH477/Oligarchy-Agent-VM
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
User={user}
Group={user}
WorkingDirectory={api_dir}
Environment=PATH={venv}/bin:/usr/local/bin:/usr/bin
Environment=PYTHONPATH={api_dir}
Environment=AGENT_ENV=production
EnvironmentFile=-{api_dir}/.env

ExecStart={api_dir}/start.sh

# Security hardening
NoNewPrivileges=true
PrivateTmp=true
ProtectSystem=strict
ProtectHome=read-only
ReadWritePaths={api_dir} {venv}

# Resource limits
MemoryMax=2G
CPUQuota=50%
Restart=always
RestartSec=5s

StandardOutput=journal
StandardError=journal
SyslogIdentifier=agentvm-api

[Install]
WantedBy=multi-user.target
"""

_API_ENV = """\
# AgentVM production configuration
# Set your actual API key here
AGENTVM_API_KEY=CHANGE-THIS-IN-PRODUCTION

DEBUG=false
LOG_LEVEL=INFO
MAX_AGENTS=20
AUTO_SPAWN=true
"""


def generate_api_start_script(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=f"{api_dir(config)}/start.sh",
        content=_API_START.format(venv=VENV_DIR, api_dir=api_dir(config), port=config.api_port),
        mode="0755",
        owner=f"{config.ssh_user}:{config.ssh_user}",
        reason="uvicorn launcher for the agent API",
    )


def generate_api_unit(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=f"{UNIT_DIR}/{API_UNIT}",
        content=_API_UNIT.format(user=config.ssh_user, api_dir=api_dir(config), venv=VENV_DIR),
        mode="0644",
        reason="systemd unit for the agent API (hardened)",
    )


def generate_api_env(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=f"{api_dir(config)}/.env",
        content=_API_ENV,
        mode="0600",
        owner=f"{config.ssh_user}:{config.ssh_user}",
        reason="API environment file (update AGENTVM_API_KEY)",
    )


# ── SSH sessions ────────────────────────────────────────────────

_SSH_WRAPPER = """\
#!/usr/bin/env bash
# One tmux session per SSH connection, optionally recorded with asciinema.
set -euo pipefail

SESSION_PREFIX="ssh-"

CLIENT_IP="unknown"
if [[ -n "${SSH_CONNECTION:-}" ]]; then
    CLIENT_IP=$(echo "$SSH_CONNECTION" | awk '{print $1}' | tr '.' '-')
fi

SESSION_NAME="${SESSION_PREFIX}$(whoami)-${CLIENT_IP}-$(date +%Y%m%d-%H%M%S)"

if [[ "${TMUX_RECORD:-false}" == "true" ]]; then
    RECORD_DIR="$HOME/ssh-recordings"
    mkdir -p "$RECORD_DIR"
    RECORD_FILE="$RECORD_DIR/$SESSION_NAME.cast"
    echo "[SSH] Recording session $SESSION_NAME to $RECORD_FILE"
    exec /usr/bin/asciinema rec --overwrite \\
        --command="tmux new-session -A -s \\"$SESSION_NAME\\"" "$RECORD_FILE"
fi

echo "[SSH] Starting session: $SESSION_NAME"
exec tmux new-session -A -s "$SESSION_NAME"
"""

_SSHD_MATCH = """\
# AgentVM SSH tmux wrapper
Match User {user}
    ForceCommand {install_dir}/ssh-tmux-wrapper.sh
"""


def generate_ssh_wrapper(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=f"{INSTALL_DIR}/ssh-tmux-wrapper.sh",
        content=_SSH_WRAPPER,
        mode="0755",
        reason="per-connection tmux session wrapper",
    )


def generate_sshd_drop_in(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=SSHD_DROP_IN,
        content=_SSHD_MATCH.format(user=config.ssh_user, install_dir=INSTALL_DIR),
        mode="0644",
        reason="sshd ForceCommand for the agent user",
    )


# ── Recording cleanup ───────────────────────────────────────────

_CLEANUP_SERVICE = """\
[Unit]
Description=AgentVM SSH recording cleanup

[Service]
Type=oneshot
User={user}
ExecStart=/usr/bin/find /home/{user}/ssh-recordings -name '*.cast' -mtime +{days} -delete

NoNewPrivileges=true
PrivateTmp=true
ProtectSystem=strict
ReadWritePaths=/home/{user}/ssh-recordings
"""

_CLEANUP_TIMER = """\
[Unit]
Description=Daily AgentVM SSH recording cleanup

[Timer]
OnCalendar=daily
Persistent=true

[Install]
WantedBy=timers.target
"""


def generate_cleanup_service(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=f"{UNIT_DIR}/{CLEANUP_SERVICE}",
        content=_CLEANUP_SERVICE.format(user=config.ssh_user, days=RECORDING_RETENTION_DAYS),
        mode="0644",
        reason=f"delete SSH recordings older than {RECORDING_RETENTION_DAYS} days",
    )


def generate_cleanup_timer(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=f"{UNIT_DIR}/{CLEANUP_TIMER}",
        content=_CLEANUP_TIMER,
        mode="0644",
        reason="daily trigger for recording cleanup",
    )


# ── Activation ──────────────────────────────────────────────────

_ACTIVATE = """\
#!/usr/bin/env bash
# Source this file to use the AgentVM virtual environment.

export AGENTVM_VENV="{venv}"
export PATH="{venv}/bin:$PATH"

source "{venv}/bin/activate"

echo "[AgentVM] Virtual environment activated"
echo "[AgentVM] Python: $(which python)"
echo "[AgentVM] Available agents: aider, opencode, claude"
echo "[AgentVM] API: http://localhost:{port}"
"""


def generate_activation_script(config: VariantConfig) -> GeneratedFile:
    return GeneratedFile(
        path=f"{INSTALL_DIR}/activate.sh",
        content=_ACTIVATE.format(venv=VENV_DIR, port=config.api_port),
        mode="0755",
        reason="venv activation helper",
    )


def systemd_units(config: VariantConfig) -> list[GeneratedFile]:
    """Every unit the guest stage installs, in install order."""
    return [
        generate_api_unit(config),
        generate_cleanup_service(config),
        generate_cleanup_timer(config),
    ]
