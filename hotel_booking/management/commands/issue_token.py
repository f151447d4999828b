from django.core.management.base import BaseCommand, CommandError
from hotel_booking.authentication import issue_signed_token
from hotel_booking.models import UserProfile


class Command(BaseCommand):
    help = 'Print a bearer token for a profile (development only)'

    def add_arguments(self, parser):
        parser.add_argument('uid')
        parser.add_argument('--role', choices=UserProfile.Role.values)

    def handle(self, *args, **options):
        role = options['role']
        if role is None:
            profile = UserProfile.objects.filter(uid=options['uid']).first()
            if profile is None:
                raise CommandError(f"No profile with uid {options['uid']}; pass --role")
            role = profile.role
        self.stdout.write(issue_signed_token(options['uid'], role))
