"""Northbound entity commands: switches, ports, routers, port groups, ACLs."""
import logging
import re
from typing import Optional

from ..config.settings import WaitType
from ..db.snapshot import Row
from ..engine.context import CommandContext
from ..engine.errors import CommandError
from .lookup import get_named_row
from .registry import AccessMode, Command
from .values import format_value

logger = logging.getLogger(__name__)

MAC_RE = re.compile(r"^([0-9a-fA-F]{2}:){5}[0-9a-fA-F]{2}(\s|$)")
ACL_DIRECTIONS = ("from-lport", "to-lport")
ACL_ACTIONS = ("allow", "allow-related", "allow-stateless", "drop", "reject")
ACL_SEVERITIES = ("alert", "warning", "notice", "info", "debug")
MAX_ACL_PRIORITY = 32767


def _by_name(row: Row) -> tuple:
    return (row.get("name") or "", row.uuid)


def _check_add_options(ctx: CommandContext) -> tuple[bool, bool]:
    may_exist = ctx.has_option("--may-exist")
    add_duplicate = ctx.has_option("--add-duplicate")
    if may_exist and add_duplicate:
        raise CommandError("--may-exist and --add-duplicate may not be used together")
    return may_exist, add_duplicate


# --- Global ---

class InitCommand(Command):
    name = "init"
    usage = "init"

    def run(self, ctx):
        # The executor creates NB_Global when it is missing.
        pass


class SyncCommand(Command):
    name = "sync"
    usage = "sync"

    def prerequisites(self, ctx):
        if ctx.options.wait_type != WaitType.NONE:
            ctx.options.force_wait = True
        else:
            logger.info("\"sync\" command has no effect without --wait")

    def run(self, ctx):
        pass


class ShowCommand(Command):
    name = "show"
    max_args = 1
    mode = AccessMode.RO
    usage = "show [SWITCH|ROUTER]"

    def run(self, ctx):
        if ctx.args:
            switch = get_named_row(ctx, "Logical_Switch", ctx.args[0], "switch", must_exist=False)
            if switch is not None:
                self._show_switch(ctx, switch)
            router = get_named_row(ctx, "Logical_Router", ctx.args[0], "router", must_exist=False)
            if router is not None:
                self._show_router(ctx, router)
            return

        for switch in sorted(ctx.rows("Logical_Switch"), key=_by_name):
            self._show_switch(ctx, switch)
        for router in sorted(ctx.rows("Logical_Router"), key=_by_name):
            self._show_router(ctx, router)

    @staticmethod
    def _show_switch(ctx: CommandContext, switch: Row) -> None:
        ctx.write(f"switch {switch.uuid} ({switch.get('name')})\n")
        ports = ctx.follow(switch, "ports")
        for port in sorted(ports, key=_by_name):
            ctx.write(f"    port {port.get('name')}\n")
            if port.get("type"):
                ctx.write(f"        type: {port.get('type')}\n")
            if port.get("addresses"):
                ctx.write(f"        addresses: {format_value(port.get('addresses'))}\n")

    @staticmethod
    def _show_router(ctx: CommandContext, router: Row) -> None:
        ctx.write(f"router {router.uuid} ({router.get('name')})\n")
        ports = ctx.follow(router, "ports")
        for port in sorted(ports, key=_by_name):
            ctx.write(f"    port {port.get('name')}\n")
            ctx.write(f"        mac: \"{port.get('mac')}\"\n")
            if port.get("networks"):
                ctx.write(f"        networks: {format_value(port.get('networks'))}\n")


# --- Logical switches ---

class LsAddCommand(Command):
    name = "ls-add"
    max_args = 1
    options = "--may-exist,--add-duplicate"
    usage = "ls-add [SWITCH]"

    def run(self, ctx):
        may_exist, add_duplicate = _check_add_options(ctx)
        name = ctx.args[0] if ctx.args else None
        if name is None and may_exist:
            raise CommandError("--may-exist requires specifying a name")

        if name is not None and not add_duplicate:
            existing = [r for r in ctx.rows("Logical_Switch") if r.get("name") == name]
            if existing:
                if may_exist:
                    return
                raise CommandError(f"{name}: a switch with this name already exists")

        ctx.insert("Logical_Switch", {"name": name or ""})


class LsDelCommand(Command):
    name = "ls-del"
    min_args = 1
    max_args = 1
    options = "--if-exists"
    usage = "ls-del SWITCH"

    def run(self, ctx):
        switch = get_named_row(ctx, "Logical_Switch", ctx.args[0], "switch",
                               must_exist=not ctx.has_option("--if-exists"))
        if switch is not None:
            ctx.delete(switch)


class LsListCommand(Command):
    name = "ls-list"
    mode = AccessMode.RO
    usage = "ls-list"

    def run(self, ctx):
        for switch in sorted(ctx.rows("Logical_Switch"), key=_by_name):
            ctx.write(f"{switch.uuid} ({switch.get('name')})\n")


# --- Logical switch ports ---

def _switch_of_port(ctx: CommandContext, port: Row) -> Optional[Row]:
    for switch in ctx.rows("Logical_Switch"):
        if port.uuid in (switch.get("ports") or []):
            return switch
    return None


class LspAddCommand(Command):
    name = "lsp-add"
    min_args = 2
    max_args = 2
    options = "--may-exist"
    usage = "lsp-add SWITCH PORT"

    def run(self, ctx):
        switch_id, port_name = ctx.args
        switch = get_named_row(ctx, "Logical_Switch", switch_id, "switch")

        existing = get_named_row(ctx, "Logical_Switch_Port", port_name, "port", must_exist=False)
        if existing is not None:
            if not ctx.has_option("--may-exist"):
                raise CommandError(f"{port_name}: a port with this name already exists")
            owner = _switch_of_port(ctx, existing)
            if owner is None or owner.uuid != switch.uuid:
                owner_name = owner.get("name") if owner else "(none)"
                raise CommandError(f"{port_name}: port already exists but in switch {owner_name}")
            return

        port_uuid = ctx.insert("Logical_Switch_Port", {"name": port_name})
        ctx.update(switch, ports=[*(switch.get("ports") or []), port_uuid])


class LspDelCommand(Command):
    name = "lsp-del"
    min_args = 1
    max_args = 1
    options = "--if-exists"
    usage = "lsp-del PORT"

    def run(self, ctx):
        port = get_named_row(ctx, "Logical_Switch_Port", ctx.args[0], "port",
                             must_exist=not ctx.has_option("--if-exists"))
        if port is None:
            return
        switch = _switch_of_port(ctx, port)
        if switch is None:
            raise CommandError(f"logical port {ctx.args[0]} is not part of any logical switch")
        ctx.update(switch, ports=[u for u in switch.get("ports") if u != port.uuid])
        ctx.delete(port)


class LspListCommand(Command):
    name = "lsp-list"
    min_args = 1
    max_args = 1
    mode = AccessMode.RO
    usage = "lsp-list SWITCH"

    def run(self, ctx):
        switch = get_named_row(ctx, "Logical_Switch", ctx.args[0], "switch")
        ports = ctx.follow(switch, "ports")
        for port in sorted(ports, key=_by_name):
            ctx.write(f"{port.uuid} ({port.get('name')})\n")


class LspSetAddressesCommand(Command):
    name = "lsp-set-addresses"
    min_args = 1
    max_args = None
    usage = "lsp-set-addresses PORT [ADDRESS]..."

    def run(self, ctx):
        port = get_named_row(ctx, "Logical_Switch_Port", ctx.args[0], "port")
        addresses = ctx.args[1:]
        for address in addresses:
            if address in ("dynamic", "unknown", "router") or MAC_RE.match(address):
                continue
            raise CommandError(
                f"{address}: Invalid address format. See ovn-nb(5). Hint: An Ethernet "
                f"address must be listed before an IP address, together as a single argument."
            )
        ctx.update(port, addresses=list(addresses))


class LspGetAddressesCommand(Command):
    name = "lsp-get-addresses"
    min_args = 1
    max_args = 1
    mode = AccessMode.RO
    usage = "lsp-get-addresses PORT"

    def run(self, ctx):
        port = get_named_row(ctx, "Logical_Switch_Port", ctx.args[0], "port")
        for address in sorted(port.get("addresses") or []):
            ctx.write(f"{address}\n")


# --- Logical routers ---

class LrAddCommand(Command):
    name = "lr-add"
    max_args = 1
    options = "--may-exist,--add-duplicate"
    usage = "lr-add [ROUTER]"

    def run(self, ctx):
        may_exist, add_duplicate = _check_add_options(ctx)
        name = ctx.args[0] if ctx.args else None
        if name is None and may_exist:
            raise CommandError("--may-exist requires specifying a name")

        if name is not None and not add_duplicate:
            existing = [r for r in ctx.rows("Logical_Router") if r.get("name") == name]
            if existing:
                if may_exist:
                    return
                raise CommandError(f"{name}: a router with this name already exists")

        ctx.insert("Logical_Router", {"name": name or ""})


class LrDelCommand(Command):
    name = "lr-del"
    min_args = 1
    max_args = 1
    options = "--if-exists"
    usage = "lr-del ROUTER"

    def run(self, ctx):
        router = get_named_row(ctx, "Logical_Router", ctx.args[0], "router",
                               must_exist=not ctx.has_option("--if-exists"))
        if router is not None:
            ctx.delete(router)


class LrListCommand(Command):
    name = "lr-list"
    mode = AccessMode.RO
    usage = "lr-list"

    def run(self, ctx):
        for router in sorted(ctx.rows("Logical_Router"), key=_by_name):
            ctx.write(f"{router.uuid} ({router.get('name')})\n")


# --- Port groups ---

class PgAddCommand(Command):
    name = "pg-add"
    min_args = 1
    max_args = None
    usage = "pg-add GROUP [PORT]..."

    def run(self, ctx):
        name = ctx.args[0]
        if any(r.get("name") == name for r in ctx.rows("Port_Group")):
            raise CommandError(f"{name}: a port group with this name already exists")
        ports = [
            get_named_row(ctx, "Logical_Switch_Port", port, "port").uuid
            for port in ctx.args[1:]
        ]
        ctx.insert("Port_Group", {"name": name, "ports": list(dict.fromkeys(ports))})


class PgDelCommand(Command):
    name = "pg-del"
    min_args = 1
    max_args = 1
    usage = "pg-del GROUP"

    def run(self, ctx):
        ctx.delete(get_named_row(ctx, "Port_Group", ctx.args[0], "port group"))


# --- ACLs ---

def _acl_container(ctx: CommandContext) -> tuple[Row, str]:
    """Resolve the switch or port group an ACL command works on."""
    record = ctx.args[0]
    acl_type = ctx.option("--type")
    if acl_type == "switch":
        return get_named_row(ctx, "Logical_Switch", record, "switch"), "ls"
    if acl_type == "port-group":
        return get_named_row(ctx, "Port_Group", record, "port group"), "port group"
    if acl_type is not None:
        raise CommandError(f"Invalid value '{acl_type}' for option --type")

    switch = get_named_row(ctx, "Logical_Switch", record, "switch", must_exist=False)
    group = get_named_row(ctx, "Port_Group", record, "port group", must_exist=False)
    if switch is not None and group is not None:
        raise CommandError(
            f"Same name '{record}' exists in both port-groups and logical switches. "
            f"Specify --type=port-group or switch"
        )
    if switch is not None:
        return switch, "ls"
    if group is not None:
        return group, "port group"
    raise CommandError(f"'{record}' is not found for port-group or switch.")


def _parse_direction(direction: str) -> str:
    if direction not in ACL_DIRECTIONS:
        raise CommandError(f"{direction}: direction must be \"to-lport\" or \"from-lport\"")
    return direction


def _parse_priority(text: str) -> int:
    try:
        priority = int(text)
    except ValueError:
        priority = -1
    if not 0 <= priority <= MAX_ACL_PRIORITY:
        raise CommandError(f"{text}: priority must in range 0...{MAX_ACL_PRIORITY}")
    return priority


def _container_acls(ctx: CommandContext, container: Row) -> list[Row]:
    return ctx.follow(container, "acls")


class AclAddCommand(Command):
    name = "acl-add"
    min_args = 5
    max_args = 5
    options = "--log,--may-exist,--type=,--name=,--severity="
    usage = "acl-add {SWITCH | PORTGROUP} DIRECTION PRIORITY MATCH ACTION"

    def run(self, ctx):
        container, kind = _acl_container(ctx)
        direction = _parse_direction(ctx.args[1])
        priority = _parse_priority(ctx.args[2])
        match, action = ctx.args[3], ctx.args[4]
        if action not in ACL_ACTIONS:
            raise CommandError(
                f"{action}: action must be one of \"allow\", \"allow-related\", "
                f"\"allow-stateless\", \"drop\", and \"reject\""
            )

        severity = ctx.option("--severity")
        if severity is not None and severity not in ACL_SEVERITIES:
            raise CommandError(f"bad severity: {severity}")
        name = ctx.option("--name")

        # Duplicates are only looked for among the ACLs of this container,
        # including ones added earlier in the same batch.
        for acl in _container_acls(ctx, container):
            if (acl.get("direction"), acl.get("priority"), acl.get("match")) == (direction, priority, match):
                if ctx.has_option("--may-exist"):
                    return
                raise CommandError(f"Same ACL already existed on the {kind} {ctx.args[0]}.")

        values = {
            "direction": direction,
            "priority": priority,
            "match": match,
            "action": action,
            "log": ctx.has_option("--log") or severity is not None or name is not None,
        }
        if name is not None:
            values["name"] = name
        if severity is not None:
            values["severity"] = severity

        acl_uuid = ctx.insert("ACL", values)
        ctx.update(container, acls=[*(container.get("acls") or []), acl_uuid])


class AclDelCommand(Command):
    name = "acl-del"
    min_args = 1
    max_args = 4
    options = "--type="
    usage = "acl-del {SWITCH | PORTGROUP} [DIRECTION [PRIORITY MATCH]]"

    def run(self, ctx):
        container, _ = _acl_container(ctx)
        acls = _container_acls(ctx, container)

        if len(ctx.args) == 1:
            ctx.update(container, acls=[])
            return
        if len(ctx.args) == 3:
            raise CommandError("cannot specify priority without match")

        direction = _parse_direction(ctx.args[1])
        if len(ctx.args) == 2:
            keep = [a.uuid for a in acls if a.get("direction") != direction]
        else:
            priority = _parse_priority(ctx.args[2])
            match = ctx.args[3]
            keep = [
                a.uuid for a in acls
                if (a.get("direction"), a.get("priority"), a.get("match")) != (direction, priority, match)
            ]
        ctx.update(container, acls=keep)


class AclListCommand(Command):
    name = "acl-list"
    min_args = 1
    max_args = 1
    options = "--type="
    mode = AccessMode.RO
    usage = "acl-list {SWITCH | PORTGROUP}"

    def run(self, ctx):
        container, _ = _acl_container(ctx)
        acls = sorted(
            _container_acls(ctx, container),
            key=lambda a: (a.get("direction"), -a.get("priority"), a.get("match")),
        )
        for acl in acls:
            line = (
                f"{acl.get('direction'):>10} {acl.get('priority'):5d} "
                f"({acl.get('match')}) {acl.get('action')}"
            )
            if acl.get("log"):
                details = []
                if acl.get("name"):
                    details.append(f"name={acl.get('name')}")
                if acl.get("severity"):
                    details.append(f"severity={acl.get('severity')}")
                line += f" log({','.join(details)})"
            ctx.write(line + "\n")


NB_COMMANDS = (
    InitCommand,
    SyncCommand,
    ShowCommand,
    LsAddCommand,
    LsDelCommand,
    LsListCommand,
    LspAddCommand,
    LspDelCommand,
    LspListCommand,
    LspSetAddressesCommand,
    LspGetAddressesCommand,
    LrAddCommand,
    LrDelCommand,
    LrListCommand,
    PgAddCommand,
    PgDelCommand,
    AclAddCommand,
    AclDelCommand,
    AclListCommand,
)
