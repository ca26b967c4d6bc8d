from django.conf import settings
from django.db import connections
from django.http import JsonResponse


def healthz(request):
    """Database ping plus whether the auth provider is configured."""
    provider = bool(settings.SUPABASE_URL and settings.SUPABASE_ANON_KEY)
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
    except Exception as e:
        return JsonResponse({'ok': False, 'auth_provider': provider, 'error': str(e)}, status=500)
    return JsonResponse({'ok': True, 'db': bool(row and row[0] == 1), 'auth_provider': provider})
