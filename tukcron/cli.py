"""
CLI interface for tukcron.

Provides commands to schedule a recurring LLM interaction, inspect what was
provisioned, manage task queues and one-shot tasks, and delegate the
interaction record to the ephemeral domain.

There is no RPC transport: commands run against the local simulation
persisted in $TUKCRON_HOME/state.json (see `tukcron sim`).
"""


import click
from solders.pubkey import Pubkey

from tukcron import __version__


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'tukcron init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _open_backends(config, persist: bool = True):
    """Primary ledger, broker and ephemeral ledger over the state file."""
    from tukcron.backends import FileBroker, FileLedger, OracleProgramSimulator, StateFile

    programs = config.program_ids()
    state = StateFile(config.get_state_path(), persist=persist)
    ledger = FileLedger(
        state,
        handlers={programs.oracle: OracleProgramSimulator(programs.oracle, programs.delegation)},
    )
    broker = FileBroker(state, programs.tuktuk, programs.cron, ledger=ledger)
    ephemeral = FileLedger(
        state,
        handlers={programs.oracle: OracleProgramSimulator(programs.oracle, programs.delegation, ephemeral=True)},
        upstream=ledger,
        section="ephemeral",
    )
    return ledger, broker, ephemeral


def _domains(config):
    from tukcron.schemas import ExecutionDomain

    primary = ExecutionDomain(name="primary", endpoint=config.rpc_url)
    ephemeral = ExecutionDomain(
        name="ephemeral",
        endpoint=config.ephemeral_rpc_url,
        ws_endpoint=config.ephemeral_ws_url,
    )
    return primary, ephemeral


def _print_report(report) -> None:
    from rich.table import Table

    from tukcron.utils import console

    table = Table(title=f"Provisioning report: {report.job or ''}")
    table.add_column("Resource")
    table.add_column("Kind")
    table.add_column("Outcome")
    table.add_column("Address")
    table.add_column("Detail")

    styles = {"created": "green", "exists": "cyan", "failed": "red"}
    for entry in report.entries:
        outcome = entry.outcome.value
        table.add_row(
            entry.name,
            entry.kind,
            f"[{styles[outcome]}]{outcome}[/{styles[outcome]}]",
            str(entry.address) if entry.address is not None else "-",
            entry.detail,
        )
    console.print(table)


@click.group()
@click.version_option(version=__version__, prog_name="tukcron")
@click.pass_context
def main(ctx):
    """
    tukcron - Idempotent scheduling of recurring LLM oracle interactions.

    Provisions queue authorities, contexts and cron jobs, then registers a
    compiled interact_with_llm transaction to run on a cron schedule.
    """
    from tukcron.config import load_config
    from tukcron.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config()
    except Exception as e:
        # init works without a config; other commands check ctx.obj
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(config.log_level, config.log_format, config.log_file)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize tukcron configuration."""
    import yaml

    from tukcron.config import TukcronConfig, get_tukcron_home

    home = get_tukcron_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = TukcronConfig(
        state_path=str(home / "state.json"),
        env_file=str(home / ".env"),
    ).to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# ANCHOR_WALLET=...\n")

    click.echo(f"Initialized tukcron config at {cfg_path}")
    click.echo("Run `tukcron sim bootstrap` to prepare the local simulation.")


@main.command("addresses")
@click.pass_context
def show_addresses(ctx):
    """Show every derived address for the configured job."""
    from tukcron import addresses
    from tukcron.config import ConfigError
    from tukcron.pipeline import derive_addresses

    config = _require_config(ctx)
    try:
        payer = config.wallet_pubkey()
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    programs = config.program_ids()
    _, broker, _ = _open_backends(config, persist=False)
    queue = broker.get_queue_by_name(config.queue_name)

    click.echo(f"Wallet: {payer}")
    click.echo(f"Context index: {config.context_index}")
    if queue is None:
        click.echo(f"Task queue '{config.queue_name}': not found")
        click.echo(f"  context: {addresses.context_key(config.context_index, programs.oracle)}")
        return

    for role, address in derive_addresses(programs, payer, queue.address, config.context_index).items():
        click.echo(f"  {role}: {address}")
    click.echo(f"  queue_authority: {addresses.queue_authority_key(programs.oracle)}")
    click.echo(f"  cron_job_name_mapping: {addresses.cron_job_name_mapping_key(payer, config.cron_name, programs.cron)}")
    job = broker.get_job_by_name(config.cron_name, payer)
    if job is not None:
        click.echo(f"  cron_job: {job.address}")
        click.echo(f"  cron_job_transaction: {addresses.cron_job_transaction_key(job.address, 0, programs.cron)}")


@main.command("schedule")
@click.option("--dry-run", is_flag=True, help="Run against the current state without persisting anything")
@click.option("--delegate", is_flag=True, help="Also delegate the interaction record to the ephemeral domain")
@click.pass_context
def schedule(ctx, dry_run: bool, delegate: bool):
    """Provision and register the recurring interaction (safe to re-run)."""
    from tukcron.config import ConfigError
    from tukcron.errors import PipelineHalted, TukcronError
    from tukcron.pipeline import run_schedule
    from tukcron.registrar import close_commands

    config = _require_config(ctx)

    if dry_run:
        click.echo("=" * 50)
        click.echo("=== DRY RUN MODE === (state file not written)")
        click.echo("=" * 50)

    ledger, broker, _ = _open_backends(config, persist=not dry_run)
    try:
        report = run_schedule(ledger, broker, config, delegate=delegate)
    except PipelineHalted as e:
        _print_report(e.report)
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    except (TukcronError, ConfigError, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    _print_report(report)
    click.echo(f"✓ Cron job '{config.cron_name}' at {report.addresses['cron_job']}")
    click.echo(
        f"\nThe interaction is posted on schedule '{config.schedule}'. "
        f"Watch task queue {report.addresses['task_queue']}. To stop the cron job:"
    )
    for command in close_commands(config.rpc_url, config.wallet, config.cron_name):
        click.echo(command)


@main.group("jobs")
def jobs_group():
    """Inspect recurring jobs."""
    pass


@jobs_group.command("list")
@click.pass_context
def list_jobs(ctx):
    """List the wallet's recurring jobs."""
    config = _require_config(ctx)
    _, broker, _ = _open_backends(config, persist=False)

    jobs = broker.list_jobs(config.wallet_pubkey())
    if not jobs:
        click.echo("No jobs registered.")
        return

    for job in sorted(jobs, key=lambda j: j.job_id):
        click.echo(f"  {job.name} [{job.schedule}] {job.address} ({len(job.slots)} slot(s))")


@jobs_group.command("show")
@click.argument("name", required=False)
@click.pass_context
def show_job(ctx, name: str = None):
    """Show a recurring job and its slots."""
    import json

    config = _require_config(ctx)
    name = name or config.cron_name
    _, broker, _ = _open_backends(config, persist=False)

    job = broker.get_job_by_name(name, config.wallet_pubkey())
    if job is None:
        click.echo(f"✗ Unknown job: {name}", err=True)
        raise SystemExit(1)

    click.echo(f"Job: {job.name}")
    click.echo(f"Address: {job.address}")
    click.echo(f"Schedule: {job.schedule}")
    click.echo(f"Queue: {job.queue}")
    click.echo()
    click.echo(json.dumps(job.to_dict(), indent=2))


@main.group("queue")
def queue_group():
    """Manage task queues."""
    pass


@queue_group.command("create")
@click.argument("name", required=False)
@click.option("--capacity", default=10, show_default=True, type=int, help="Maximum queued tasks.")
@click.option("--min-crank-reward", default=0, show_default=True, type=int, help="Minimum crank reward in lamports.")
@click.pass_context
def create_queue(ctx, name: str, capacity: int, min_crank_reward: int):
    """Create a task queue (defaults to the configured queue name)."""
    from tukcron.errors import TukcronError
    from tukcron.provisioner import Provisioner
    from tukcron.registrar import Registrar

    config = _require_config(ctx)
    name = name or config.queue_name
    ledger, broker, _ = _open_backends(config)
    programs = config.program_ids()

    registrar = Registrar(broker, Provisioner(ledger, config.wallet_pubkey()), programs.cron)
    try:
        queue = registrar.ensure_queue(name, capacity=capacity, min_crank_reward=min_crank_reward)
    except TukcronError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Task queue '{queue.name}' (id {queue.queue_id}) at {queue.address}")


@main.group("task")
def task_group():
    """Queue one-shot tasks."""
    pass


@task_group.command("queue")
@click.option("--id", "task_id", required=True, type=int, help="Task id (u16) within the queue.")
@click.option("--text", default=None, help="Prompt text (defaults to interaction_text).")
@click.option("--crank-reward", default=1_000_002, show_default=True, type=int, help="Crank reward in lamports.")
@click.option("--free-tasks", default=1, show_default=True, type=int, help="Follow-up tasks queued for free.")
@click.option("--description", default="Scheduled LLM interaction", show_default=True, help="Operator-facing description.")
@click.pass_context
def queue_task(ctx, task_id: int, text: str, crank_reward: int, free_tasks: int, description: str):
    """
    Queue the interact_with_llm call once, for immediate execution.

    The task is queued under the oracle program's queue authority and pays
    for the interaction record itself; the wallet funds it with the rent.
    """
    from tukcron.errors import PipelineHalted, TukcronError
    from tukcron.pipeline import SchedulePipeline

    config = _require_config(ctx)
    ledger, broker, _ = _open_backends(config)

    pipeline = SchedulePipeline(
        ledger,
        broker,
        payer=config.wallet_pubkey(),
        programs=config.program_ids(),
        max_attempts=config.retry.get("max_attempts", 3),
        backoff_seconds=config.retry.get("backoff_seconds", 0.5),
    )
    try:
        report = pipeline.queue_interaction(
            config.queue_name,
            task_id,
            text or config.interaction_text,
            context_index=config.context_index,
            crank_reward=crank_reward,
            free_tasks=free_tasks,
            description=description,
        )
    except PipelineHalted as e:
        _print_report(e.report)
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    except (TukcronError, ValueError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    _print_report(report)
    click.echo(f"✓ Task {task_id} queued at {report.addresses['task']}")


@main.command("delegate")
@click.pass_context
def delegate(ctx):
    """Delegate the interaction record to the ephemeral domain."""
    from tukcron import addresses
    from tukcron import instructions as ixs
    from tukcron.delegation import DelegationCoordinator
    from tukcron.errors import TukcronError

    config = _require_config(ctx)
    ledger, _, _ = _open_backends(config)
    programs = config.program_ids()
    payer = config.wallet_pubkey()
    _, ephemeral_domain = _domains(config)

    context = addresses.context_key(config.context_index, programs.oracle)
    interaction = addresses.interaction_key(payer, context, programs.oracle)
    coordinator = DelegationCoordinator(
        ledger,
        payer,
        owner_program=programs.oracle,
        delegation_program=programs.delegation,
        build_instructions=lambda resource: [ixs.delegate_interaction_ix(
            programs.oracle, payer, resource, context, programs.delegation,
        )],
    )
    try:
        handle = coordinator.ensure_delegated(interaction, ephemeral_domain)
    except TukcronError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ {handle.resource} processed by {handle.domain.name} ({handle.domain.endpoint})")


@main.command("interact")
@click.option("--text", default=None, help="Prompt text (defaults to interaction_text).")
@click.pass_context
def interact(ctx, text: str):
    """Post one interaction, routed to the domain processing the record."""
    from tukcron import addresses
    from tukcron import instructions as ixs
    from tukcron.delegation import ExecutionRouter
    from tukcron.errors import TukcronError

    config = _require_config(ctx)
    ledger, _, ephemeral = _open_backends(config)
    programs = config.program_ids()
    payer = config.wallet_pubkey()
    primary_domain, ephemeral_domain = _domains(config)

    context = addresses.context_key(config.context_index, programs.oracle)
    interaction = addresses.interaction_key(payer, context, programs.oracle)
    router = ExecutionRouter(ledger, ephemeral, programs.delegation, primary_domain, ephemeral_domain)

    ix = ixs.interact_with_llm_ix(
        programs.oracle,
        payer=payer,
        interaction=interaction,
        context_account=context,
        text=text or config.interaction_text,
        callback_program=programs.oracle,
    )
    try:
        receipt = router.submit(interaction, [ix], signer=payer)
    except TukcronError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Interaction posted on {router.domain_for(interaction).name}: {receipt.signature}")


# =============================================================================
# Simulation Commands - Seed the local state file
# =============================================================================

@main.group("sim")
def sim_group():
    """Seed the local simulation state."""
    pass


@sim_group.command("airdrop")
@click.argument("address", required=False)
@click.option("--lamports", default=1_000_000_000, show_default=True, type=int, help="Amount to credit.")
@click.pass_context
def airdrop(ctx, address: str, lamports: int):
    """Credit lamports to ADDRESS (defaults to the wallet)."""
    config = _require_config(ctx)
    target = Pubkey.from_string(address) if address else config.wallet_pubkey()
    ledger, _, _ = _open_backends(config)
    ledger.airdrop(target, lamports)
    click.echo(f"✓ Credited {lamports} lamports to {target}")


@sim_group.command("bootstrap")
@click.option("--lamports", default=2_000_000_000, show_default=True, type=int, help="Wallet airdrop amount.")
@click.option("--capacity", default=10, show_default=True, type=int, help="Task queue capacity.")
@click.pass_context
def bootstrap(ctx, lamports: int, capacity: int):
    """Fund the wallet, initialise the oracle counter and create the task queue."""
    from tukcron import addresses
    from tukcron import instructions as ixs
    from tukcron.backends import rent_exempt_minimum
    from tukcron.schemas import AccountInfo

    config = _require_config(ctx)
    ledger, broker, _ = _open_backends(config)
    programs = config.program_ids()
    payer = config.wallet_pubkey()

    ledger.airdrop(payer, lamports)
    click.echo(f"✓ Credited {lamports} lamports to {payer}")

    counter = addresses.counter_key(programs.oracle)
    if ledger.get_account(counter) is None:
        data = ixs.encode_counter(0)
        ledger.set_account(counter, AccountInfo(
            lamports=rent_exempt_minimum(len(data)),
            owner=programs.oracle,
            data=data,
        ))
        click.echo(f"✓ Oracle counter initialised at {counter}")
    else:
        click.echo(f"Oracle counter already exists at {counter}")

    queue = broker.get_queue_by_name(config.queue_name)
    if queue is None:
        queue = broker.create_queue(config.queue_name, capacity, 0)
        click.echo(f"✓ Task queue '{queue.name}' created at {queue.address}")
    else:
        click.echo(f"Task queue '{queue.name}' already exists at {queue.address}")


if __name__ == "__main__":
    main()
