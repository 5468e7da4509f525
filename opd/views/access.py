from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..access import features_for_role, role_for_user


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def access_features(request):
    """Role of the current user and the dashboard features it unlocks."""
    role = role_for_user(request.user)
    return Response({'role': role, 'features': features_for_role(role)})
