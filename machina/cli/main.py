"""
Main CLI module with argument parsing and command execution.

Commands run against the same database and vault as the server. Only
``serve`` starts background work; the others act once and exit.
"""
import argparse
import os
import sys
from typing import Any, Dict

from machina._package import __version__
from machina.cli.formatters import format_output
from machina.domain.core.exceptions import MachinaError
from machina.infrastructure.logging.logger import get_logger
from machina.infrastructure.vault.credential_vault import generate_master_key


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog=os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "machina",
        description="Machina - deployment and provisioning orchestrator for cloud machines",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve                             # Run the REST API
  %(prog)s machines list --status running    # List running machines
  %(prog)s machines sync                     # Reconcile with providers
  %(prog)s deployments approve <id>          # Approve a pending plan
  %(prog)s audit list --target-id <id>       # Show who changed a resource
  %(prog)s workspaces cleanup                # Recover after a crash
  %(prog)s vault generate-key                # Print a new master key
        """
    )
    parser.add_argument('--config', help='Configuration file path')
    parser.add_argument('--format', choices=['json', 'yaml'], default='json', help='Output format')
    parser.add_argument('--user', default='cli', help='Actor id recorded in the audit log')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='resource', help='Available resources')

    serve = subparsers.add_parser('serve', help='Run the REST API server')
    serve.add_argument('--host', help='Override the configured host')
    serve.add_argument('--port', type=int, help='Override the configured port')

    machines = subparsers.add_parser('machines', help='Inspect and reconcile machines')
    machines_sub = machines.add_subparsers(dest='action', help='Machine actions')
    machines_list = machines_sub.add_parser('list', help='List machines')
    machines_list.add_argument('--status', help='Filter by observed status')
    machines_list.add_argument('--provider', help='Filter by provider type')
    machines_list.add_argument('--region', help='Filter by region')
    machines_list.add_argument('--all', action='store_true', help='Include deleted machines')
    machines_show = machines_sub.add_parser('show', help='Show machine details')
    machines_show.add_argument('machine_id')
    machines_sub.add_parser('sync', help='Reconcile every machine with its provider')

    deployments = subparsers.add_parser('deployments', help='Inspect and control deployments')
    deployments_sub = deployments.add_subparsers(dest='action', help='Deployment actions')
    deployments_list = deployments_sub.add_parser('list', help='List deployments')
    deployments_list.add_argument('--machine-id')
    deployments_list.add_argument('--type')
    deployments_list.add_argument('--state')
    deployments_list.add_argument('--limit', type=int, default=50)
    for action, help_text in (('show', 'Show deployment details'),
                              ('logs', 'Print stored log lines'),
                              ('approve', 'Approve a plan awaiting approval'),
                              ('cancel', 'Cancel a deployment')):
        sub = deployments_sub.add_parser(action, help=help_text)
        sub.add_argument('deployment_id')

    audit = subparsers.add_parser('audit', help='Read the audit trail')
    audit_sub = audit.add_subparsers(dest='action', help='Audit actions')
    audit_list = audit_sub.add_parser('list', help='List audit events, newest first')
    audit_list.add_argument('--target-id')
    audit_list.add_argument('--action-name', dest='audit_action', help='e.g. machine.create')
    audit_list.add_argument('--limit', type=int, default=50)

    workspaces = subparsers.add_parser('workspaces', help='Manage Terraform workspaces')
    workspaces_sub = workspaces.add_subparsers(dest='action', help='Workspace actions')
    workspaces_sub.add_parser('cleanup', help='Fail interrupted deployments and clean orphaned workspaces')

    vault = subparsers.add_parser('vault', help='Credential vault utilities')
    vault_sub = vault.add_subparsers(dest='action', help='Vault actions')
    vault_sub.add_parser('generate-key', help='Print a new hex-encoded master key')

    return parser.parse_args(argv)


def serve(args, app) -> None:
    import uvicorn

    from machina.api.server import create_fastapi_app

    server_config = app.config.server
    fastapi_app = create_fastapi_app(server_config, app, manage_lifecycle=True)
    uvicorn.run(
        fastapi_app,
        host=args.host or server_config.host,
        port=args.port or server_config.port,
        log_level=server_config.log_level,
        access_log=server_config.access_log,
    )


def execute_command(args, app) -> Dict[str, Any]:
    """Run a one-shot command and return its printable result."""
    if args.resource == 'machines':
        if args.action == 'list':
            machines = app.machine_service.list_machines(
                status=args.status, provider=args.provider, region=args.region, include_deleted=args.all
            )
            return {"machines": [m.to_dict() for m in machines], "count": len(machines)}
        if args.action == 'show':
            return {"machine": app.machine_service.get_machine(args.machine_id).to_dict()}
        if args.action == 'sync':
            return app.reconciliation.sync(args.user).to_dict()

    if args.resource == 'deployments':
        orchestrator = app.orchestrator
        if args.action == 'list':
            found = orchestrator.list(machine_id=args.machine_id, deployment_type=args.type,
                                      state=args.state, limit=args.limit)
            return {"deployments": [d.to_dict() for d in found], "count": len(found)}
        if args.action == 'show':
            return {"deployment": orchestrator.get(args.deployment_id).to_dict()}
        if args.action == 'logs':
            return {"logs": [entry.to_dict() for entry in orchestrator.get_logs(args.deployment_id)]}
        if args.action == 'approve':
            return {"deployment": orchestrator.approve(args.deployment_id, args.user).to_dict()}
        if args.action == 'cancel':
            return {"deployment": orchestrator.cancel(args.deployment_id, args.user).to_dict()}

    if args.resource == 'audit' and args.action == 'list':
        events = app.audit.search(target_id=args.target_id, action=args.audit_action, limit=args.limit)
        return {"events": [e.to_dict() for e in events], "count": len(events)}

    if args.resource == 'workspaces' and args.action == 'cleanup':
        return app.orchestrator.recover().to_dict()

    raise ValueError(f"Unknown command: {args.resource} {args.action}")


def main(argv=None) -> None:
    """Main CLI entry point."""
    args = parse_args(argv)
    logger = get_logger(__name__)

    if not args.resource:
        print("Error: No resource specified. Use --help for usage information.")
        sys.exit(1)

    if args.resource == 'vault':
        if args.action != 'generate-key':
            print("Error: No action specified for vault. Use --help for usage information.")
            sys.exit(1)
        print(generate_master_key())
        return

    if args.resource != 'serve' and not getattr(args, 'action', None):
        print(f"Error: No action specified for {args.resource}. Use --help for usage information.")
        sys.exit(1)

    try:
        from machina.bootstrap import Application
        app = Application(config_path=args.config)
    except MachinaError as e:
        logger.error("Failed to initialize application", error_code=e.code, error=e.message)
        print(f"Error: {e.message}")
        sys.exit(1)

    try:
        if args.resource == 'serve':
            serve(args, app)
            return
        result = execute_command(args, app)
        print(format_output(result, args.format))
    except MachinaError as e:
        logger.error("Command failed", error_code=e.code, error=e.message)
        print(format_output({"success": False, "error": e.to_dict()}, args.format))
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        sys.exit(130)
    finally:
        if args.resource != 'serve':
            app.shutdown()


if __name__ == "__main__":
    main()
