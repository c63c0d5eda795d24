from flask import Blueprint, request, abort, g
from sqlalchemy import select
from storefront import get_db
from storefront.authz.scope import build_read_filter, check_write
from storefront.decorators.auth import require_permission
from storefront.models.product import Product
from storefront.services.audit import add_audit
from storefront.services.policy import current_conditions
from storefront.utils.filters import apply_filters, eq_filter
from storefront.utils.listing import paginate, list_response
from storefront.utils.sorting import apply_multi_sort
from storefront.utils.timeutil import iso
from storefront.utils.validation import json_body, parse_int, require_fields

products_bp = Blueprint('products', __name__)

UPDATABLE = ('name', 'branch_id', 'category_id', 'price_cents', 'stock')

PRODUCT_FILTERS = {
    'branch_id': {'op': eq_filter(Product.branch_id)},
    'category_id': {'op': eq_filter(Product.category_id)},
    'sku': {'op': eq_filter(Product.sku)},
}


def _product_json(p: Product):
    return {
        'id': p.id,
        'name': p.name,
        'sku': p.sku,
        'branch_id': p.branch_id,
        'category_id': p.category_id,
        'price_cents': p.price_cents,
        'stock': p.stock,
        'created_by': p.created_by,
        'updated_at': iso(p.updated_at),
    }


def _snapshot(p: Product):
    return {k: getattr(p, k) for k in UPDATABLE + ('created_by',)}


def _clean(data):
    out = {}
    if 'name' in data:
        name = str(data.get('name') or '').strip()
        if not name:
            abort(400, description='name required')
        out['name'] = name
    for key in ('branch_id', 'category_id'):
        if key in data:
            out[key] = str(data[key]) if data[key] is not None else None
    if 'price_cents' in data:
        out['price_cents'] = parse_int(data['price_cents'], 'price_cents', minimum=0)
    if 'stock' in data:
        out['stock'] = parse_int(data['stock'], 'stock', minimum=0)
    return out


@products_bp.get('')
@require_permission('products', 'read')
def list_products():
    session = get_db()
    stmt = build_read_filter(select(Product), Product, current_conditions(), g.actor_id)
    stmt = apply_filters(stmt, PRODUCT_FILTERS, request.args)
    allowed = {'name': Product.name, 'price_cents': Product.price_cents, 'updated_at': Product.updated_at, 'id': Product.id}
    stmt = apply_multi_sort(stmt, request.args.get('sort'), allowed, Product.id)
    rows, total, limit, offset = paginate(session, stmt)
    latest_ts = max((p.updated_at for p in rows if p.updated_at), default=None)
    return list_response([_product_json(p) for p in rows], total, limit, offset, latest_ts)


@products_bp.post('')
@require_permission('products', 'create')
def create_product():
    data = json_body()
    require_fields(data, 'name', 'sku')
    fields = _clean(data)
    fields['created_by'] = g.actor_id
    check_write(None, fields, current_conditions(), g.actor_id, resource='products')
    session = get_db()
    sku = str(data['sku']).strip()
    if session.execute(select(Product).where(Product.sku == sku)).scalar_one_or_none():
        abort(400, description='sku exists')
    product = Product(sku=sku, **fields)
    session.add(product)
    session.flush()
    add_audit(session, 'PRODUCT.CREATE', 'Product', product.id, {'sku': sku}, g.actor_id)
    session.commit()
    return _product_json(product), 201


@products_bp.patch('/<int:product_id>')
@require_permission('products', 'update')
def update_product(product_id: int):
    data = json_body()
    changes = _clean(data)
    if not changes:
        abort(400, description='no changes supplied')
    session = get_db()
    product = session.get(Product, product_id)
    if product is None:
        abort(404, description='Product not found')
    check_write(product, {**_snapshot(product), **changes}, current_conditions(), g.actor_id,
                resource='products', record_id=product.id)
    for key, value in changes.items():
        setattr(product, key, value)
    add_audit(session, 'PRODUCT.UPDATE', 'Product', product.id, {'fields': sorted(changes)}, g.actor_id)
    session.commit()
    return _product_json(product)


@products_bp.delete('/<int:product_id>')
@require_permission('products', 'delete')
def delete_product(product_id: int):
    session = get_db()
    product = session.get(Product, product_id)
    if product is None:
        abort(404, description='Product not found')
    check_write(product, None, current_conditions(), g.actor_id, resource='products', record_id=product.id)
    session.delete(product)
    add_audit(session, 'PRODUCT.DELETE', 'Product', product_id, None, g.actor_id)
    session.commit()
    return {'deleted': product_id}
