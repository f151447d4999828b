from django.core.management.base import BaseCommand
from hotel_booking.models import Room, UserProfile


class Command(BaseCommand):
    help = 'Populate database with sample rooms and a staff account'

    def add_arguments(self, parser):
        parser.add_argument('--admin-uid', default='admin', help='Subject id of the seeded admin profile')

    def handle(self, *args, **options):
        rooms_data = [
            {
                'number': '101',
                'room_type': 'Standard',
                'price': 80000,
                'price_usd': 22,
                'capacity': 2,
                'amenities': ['WiFi', 'TV'],
                'description': 'Comfortable standard room with garden view'
            },
            {
                'number': '102',
                'room_type': 'Standard',
                'price': 85000,
                'price_usd': 23,
                'capacity': 2,
                'amenities': ['WiFi', 'TV', 'Balcony'],
                'description': 'Standard room with balcony'
            },
            {
                'number': '201',
                'room_type': 'Deluxe',
                'price': 150000,
                'price_usd': 40,
                'capacity': 3,
                'amenities': ['WiFi', 'TV', 'Mini Bar', 'Air Conditioning'],
                'description': 'Spacious deluxe room with lake view'
            },
            {
                'number': '202',
                'room_type': 'Deluxe',
                'price': 160000,
                'price_usd': 43,
                'capacity': 3,
                'amenities': ['WiFi', 'TV', 'Mini Bar'],
                'description': 'Deluxe room with city view and mini bar'
            },
            {
                'number': '301',
                'room_type': 'Family Suite',
                'price': 250000,
                'price_usd': 67,
                'capacity': 4,
                'amenities': ['WiFi', 'TV', 'Kitchenette'],
                'description': 'Large family suite with kitchenette'
            },
            {
                'number': '401',
                'room_type': 'Executive Suite',
                'price': 400000,
                'price_usd': 107,
                'capacity': 4,
                'amenities': ['WiFi', 'TV', 'Mini Bar', 'Jacuzzi', 'Air Conditioning'],
                'description': 'Executive suite with all amenities'
            },
        ]

        for room_data in rooms_data:
            room, created = Room.objects.get_or_create(
                number=room_data['number'],
                defaults=room_data
            )

            if created:
                self.stdout.write(f'Created room: {room.number} - {room.room_type}')
            else:
                self.stdout.write(f'Room {room.number} already exists')

        _, created = UserProfile.objects.get_or_create(
            uid=options['admin_uid'],
            defaults={'name': 'Administrator', 'role': UserProfile.Role.ADMIN},
        )
        if created:
            self.stdout.write(f"Created admin profile: {options['admin_uid']}")

        self.stdout.write(
            self.style.SUCCESS('Successfully populated database with sample data')
        )
