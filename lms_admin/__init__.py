"""LMS administration service over Keycloak.

To run the Flask app:
    from lms_admin.flask_app import create_app

To use Keycloak services:
    from lms_admin.core.keycloak import UserService, KeycloakClient

To use the administrative service layer:
    from lms_admin.core.provisioning_service import AdminService
"""
# Note: flask_app is not imported here so CLI scripts only pull in the core
