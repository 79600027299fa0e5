"""
Command line interface.

    sitebackup backup [db|site|all]
    sitebackup retrieve [db|site] [--identifier ID] [--dest PATH]
    sitebackup cleanup [db|site|all] [--keep N]
    sitebackup list [db|site|all]
    sitebackup schedule

Exit code 0 on success, 1 on any unrecovered failure (reason on stderr).
"""

import os

import click

from sitebackup import configure_logging
from sitebackup.config import load_config
from sitebackup.models import BackupClass, parse_artifact_key
from sitebackup.backup.errors import BackupError
from sitebackup.backup.executor import run_backup
from sitebackup.backup.retention import enforce_retention_policies, list_artifacts
from sitebackup.backup.retrieval import RetrievalManager
from sitebackup.backup.storage import StorageError, create_store


CLASS_KEYS = [member.value for member in BackupClass]


def _classes(class_key):
    if class_key is None or class_key == 'all':
        return list(BackupClass)
    return [BackupClass.from_key(class_key)]


def _abort(ctx, message):
    click.echo(f"Error: {message}", err=True)
    ctx.exit(1)


def _echo_artifact(artifact):
    click.echo(f"{artifact.storage_path}\t{artifact.size_bytes}")


@click.group()
@click.option('--env', 'config_name', envvar='SITEBACKUP_ENV', default=None,
              help='Configuration name (development, production, testing).')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging.')
@click.pass_context
def cli(ctx, config_name, verbose):
    """Back up, list, retrieve and prune database and site archives."""
    if ctx.obj is None:
        try:
            ctx.obj = load_config(config_name)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='--env')
    configure_logging(ctx.obj, verbose=verbose)


@cli.command()
@click.argument('backup_class', type=click.Choice(CLASS_KEYS + ['all']), default='all')
@click.pass_context
def backup(ctx, backup_class):
    """Back up one class, or all classes with one shared identifier."""
    config = ctx.obj
    try:
        artifacts = run_backup(config, _classes(backup_class))
    except (BackupError, ValueError) as e:
        for artifact in getattr(e, 'completed_artifacts', []):
            _echo_artifact(artifact)
        message = str(e)
        if isinstance(e, StorageError) and e.artifact_path:
            message += f" (artifact kept at {e.artifact_path})"
        _abort(ctx, message)

    for artifact in artifacts:
        _echo_artifact(artifact)


@cli.command()
@click.argument('backup_class', type=click.Choice(CLASS_KEYS), required=False)
@click.option('-i', '--identifier', default=None,
              help='Timestamp or full key (e.g. site.20230105120000). Default: latest.')
@click.option('-d', '--dest', 'destination', type=click.Path(), default=None,
              help='File or directory to write to. Default: current directory.')
@click.pass_context
def retrieve(ctx, backup_class, identifier, destination):
    """Download an artifact (the latest unless --identifier is given)."""
    config = ctx.obj

    if backup_class is None and identifier is not None:
        parsed = parse_artifact_key(identifier)
        if parsed is None:
            raise click.UsageError('Give a backup class or a full artifact key as --identifier.')
        classes = [parsed[0]]
    else:
        classes = _classes(backup_class)

    if len(classes) > 1 and destination is not None:
        os.makedirs(destination, exist_ok=True)
        destination = os.path.join(destination, '')

    missing = []
    try:
        for cls in classes:
            manager = RetrievalManager(create_store(config, cls), config.COMPRESSION_FORMAT)
            result = manager.retrieve(cls, identifier=identifier, destination=destination)
            if result is None:
                missing.append(identifier)
                continue
            click.echo(f"{result.artifact.storage_path}\t{result.path}")
    except (BackupError, ValueError) as e:
        _abort(ctx, str(e))

    if missing:
        _abort(ctx, f"Artifact not found: {', '.join(missing)}")


@cli.command()
@click.argument('backup_class', type=click.Choice(CLASS_KEYS + ['all']), default='all')
@click.option('-k', '--keep', type=click.IntRange(min=0), default=None,
              help='Number of most recent artifacts to keep. Default: configured policy.')
@click.pass_context
def cleanup(ctx, backup_class, keep):
    """Delete all but the N most recent artifacts."""
    config = ctx.obj
    try:
        reports = enforce_retention_policies(config, _classes(backup_class), keep_count=keep)
    except (BackupError, ValueError) as e:
        _abort(ctx, str(e))

    for report in reports:
        for key in report.deleted:
            click.echo(f"deleted\t{key}")
        for key in report.kept:
            click.echo(f"kept\t{key}")
        for key, reason in sorted(report.failed.items()):
            click.echo(f"failed\t{key}\t{reason}", err=True)
        if report.error:
            click.echo(f"error\t{report.backup_class.value}\t{report.error}", err=True)

    problems = []
    failed_count = sum(len(report.failed) for report in reports)
    if failed_count:
        problems.append(f"{failed_count} deletion(s) failed")
    errored = [report.backup_class.value for report in reports if report.error]
    if errored:
        problems.append(f"cleanup of {', '.join(errored)} failed")
    if problems:
        _abort(ctx, '; '.join(problems))


@cli.command('list')
@click.argument('backup_class', type=click.Choice(CLASS_KEYS + ['all']), default='all')
@click.pass_context
def list_command(ctx, backup_class):
    """List stored artifacts, oldest first."""
    config = ctx.obj
    try:
        for cls in _classes(backup_class):
            for artifact in list_artifacts(create_store(config, cls), cls):
                created = artifact.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')
                click.echo(f"{artifact.storage_path}\t{artifact.size_bytes}\t{created}")
    except (BackupError, ValueError) as e:
        _abort(ctx, str(e))


@cli.command()
@click.pass_context
def schedule(ctx):
    """Run scheduled backups and cleanups in the foreground."""
    from sitebackup.scheduler import init_scheduler, start_scheduler

    try:
        scheduler = init_scheduler(ctx.obj)
    except ValueError as e:
        _abort(ctx, f"Invalid schedule: {e}")
    start_scheduler(scheduler)


def main():
    cli(prog_name='sitebackup')


if __name__ == '__main__':
    main()
