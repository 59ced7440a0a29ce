from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from daphne.cli import CommandLineInterface


class Command(BaseCommand):
    help = "Serve the HTTP API and the chat socket with Daphne."

    def add_arguments(self, parser):
        parser.add_argument("--host", default=None, help="Interface to bind (defaults to HOST).")
        parser.add_argument("--port", type=int, default=None, help="Port to listen on (defaults to PORT).")

    def handle(self, *args, **options):
        host = options["host"] or settings.HOST
        port = options["port"] or settings.PORT
        if not port:
            raise CommandError("No port configured: set PORT or pass --port.")

        self.stdout.write(f"Listening on {host}:{port}")
        CommandLineInterface().run([
            "--bind", str(host),
            "--port", str(port),
            settings.ASGI_APPLICATION.replace(".application", ":application"),
        ])
