from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy import select
from portal import get_db
from portal.constants.permissions import ALL_ROLES, ALL_FLAG_NAMES, AppRole
from portal.decorators.audit import audit_log
from portal.decorators.auth import current_user_id, require_admin
from portal.errors import AccessDenied, MatrixConfigurationError, PermissionLookupError, RoleLookupError, ValidationFailed
from portal.models.authz import Profile, UserRole
from portal.config.pagination import normalize_pagination
from portal.services.matrix import load_matrix, update_matrix
from portal.services.roles import resolve_role, assign_role, assert_not_removing_last_admin
from portal.utils.validation import parse_role

iam_bp = Blueprint('iam', __name__)

PROFILE_FIELDS = ('first_name', 'last_name', 'email', 'phone', 'company_name', 'address')


def _profile_json(p: Profile):
    if p is None:
        return None
    return {
        'user_id': p.user_id,
        'first_name': p.first_name,
        'last_name': p.last_name,
        'full_name': p.full_name,
        'email': p.email,
        'phone': p.phone,
        'company_name': p.company_name,
        'address': p.address,
    }


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed('JSON object body required')
    return data


def _stored_role(user_id: str) -> str:
    row = get_db().execute(select(UserRole).where(UserRole.user_id==user_id)).scalar_one_or_none()
    return row.role if row else AppRole.USER.value


@iam_bp.get('/me')
@jwt_required()
def me():
    session = get_db()
    user_id = current_user_id()
    try:
        role = resolve_role(session, user_id)
        matrix = load_matrix(session, role)
    except (RoleLookupError, PermissionLookupError) as e:
        session.rollback()
        raise AccessDenied('Unable to verify permissions') from e
    profile = session.query(Profile).filter_by(user_id=user_id).one_or_none()
    return {
        'user_id': user_id,
        'role': role.value,
        'is_admin': role == AppRole.ADMIN,
        'profile': _profile_json(profile),
        'permissions': matrix.to_flags(),
        'owner_editable_statuses': sorted(s.value for s in current_app.extensions['owner_editable_statuses']),
    }


@iam_bp.put('/me/profile')
@jwt_required()
@audit_log('PROFILE.UPSERT', entity='Profile', entity_id_key='user_id', meta_keys=['created'])
def upsert_profile():
    data = _json_body()
    session = get_db()
    user_id = current_user_id()
    profile = session.query(Profile).filter_by(user_id=user_id).one_or_none()
    created = profile is None
    if created:
        missing = [k for k in ('first_name', 'last_name') if not isinstance(data.get(k), str) or not data[k].strip()]
        if missing:
            raise ValidationFailed('first_name and last_name required', details={'missing': missing})
    updates = {}
    for key in PROFILE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if value is not None and not isinstance(value, str):
            raise ValidationFailed(f'{key} must be a string')
        if key in ('first_name', 'last_name') and not (value or '').strip():
            raise ValidationFailed(f'{key} must not be blank')
        updates[key] = value.strip() if isinstance(value, str) else value
    if created:
        profile = Profile(user_id=user_id)
        session.add(profile)
    for key, value in updates.items():
        setattr(profile, key, value)
    session.commit()
    body = _profile_json(profile)
    body['created'] = created
    return body, 201 if created else 200


@iam_bp.get('/users')
@require_admin
def list_users():
    session = get_db()
    limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    q = session.query(Profile, UserRole.role).outerjoin(UserRole, UserRole.user_id==Profile.user_id)
    total = q.count()
    rows = q.order_by(Profile.id.asc()).offset(offset).limit(limit).all()
    data = []
    for profile, role in rows:
        item = _profile_json(profile)
        item['role'] = role or AppRole.USER.value
        data.append(item)
    return {
        'data': data,
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(data)},
    }


@iam_bp.put('/users/<user_id>/role')
@require_admin
@audit_log(
    'USER.ROLE.SET',
    entity='UserRole',
    entity_id_key='user_id',
    diff_keys=['role'],
    pre_fetch=lambda a, kw: {'role': _stored_role(kw['user_id'])},
)
def set_user_role(user_id: str):
    data = _json_body()
    role = parse_role(data.get('role'))
    session = get_db()
    assert_not_removing_last_admin(session, user_id, role)
    assign_role(session, user_id, role)
    session.commit()
    current_app.logger.info('Role of %s set to %s by %s', user_id, role.value, current_user_id())
    return {'user_id': user_id, 'role': role.value}


@iam_bp.get('/role-permissions')
@require_admin
def list_role_permissions():
    session = get_db()
    data = []
    for role in ALL_ROLES:
        try:
            flags = load_matrix(session, role).to_flags()
        except MatrixConfigurationError:
            flags = None
        data.append({'role': role.value, 'configured': flags is not None, 'permissions': flags})
    return {'data': data, 'flag_names': list(ALL_FLAG_NAMES)}


@iam_bp.put('/role-permissions/<role>')
@require_admin
@audit_log(
    'ROLE.PERM.UPDATE',
    entity='RolePermission',
    entity_id_key='role',
    meta_builder=lambda data, rv, a, kw: {'changed': data.get('changed', [])},
)
def update_role_permissions(role: str):
    app_role = parse_role(role)
    flags = _json_body()
    if not flags:
        raise ValidationFailed('At least one permission flag required')
    session = get_db()
    matrix = update_matrix(session, app_role, flags)
    session.commit()
    return {'role': app_role.value, 'permissions': matrix.to_flags(), 'changed': sorted(flags)}
