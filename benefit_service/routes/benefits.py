from flask import Blueprint, request, jsonify
from benefit_service.errors import InvalidArgument
from benefit_service.observability import transfer_span
from benefit_service.services.benefit_service import (
    create_benefit,
    delete_benefit,
    get_benefit,
    list_active_benefits,
    list_benefits,
    search_benefits,
    update_benefit,
)
from benefit_service.services.transfer_service import get_transfer_engine

benefits_bp = Blueprint('benefits', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidArgument('Request body must be a JSON object')
    return data


@benefits_bp.route('', methods=['GET'], strict_slashes=False)
def list_all():
    """
    List all benefits
    ---
    tags:
      - Benefits
    responses:
      200:
        description: Every benefit, active or not
    """
    return jsonify([b.to_dict() for b in list_benefits()]), 200


@benefits_bp.route('/active', methods=['GET'])
def list_active():
    """
    List active benefits
    ---
    tags:
      - Benefits
    responses:
      200:
        description: Benefits with active=true
    """
    return jsonify([b.to_dict() for b in list_active_benefits()]), 200


@benefits_bp.route('/search', methods=['GET'])
def search():
    """
    Search benefits by name
    ---
    tags:
      - Benefits
    parameters:
      - name: name
        in: query
        type: string
        required: true
        description: Case-insensitive fragment of the name
    responses:
      200:
        description: Matching benefits
      400:
        description: Missing name parameter
    """
    return jsonify([b.to_dict() for b in search_benefits(request.args.get('name'))]), 200


@benefits_bp.route('/<benefit_id>', methods=['GET'])
def get_one(benefit_id):
    """
    Get a benefit
    ---
    tags:
      - Benefits
    parameters:
      - name: benefit_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Benefit details, including inactive ones
      404:
        description: Benefit not found
    """
    return jsonify(get_benefit(benefit_id).to_dict()), 200


@benefits_bp.route('', methods=['POST'], strict_slashes=False)
def create():
    """
    Create a benefit
    ---
    tags:
      - Benefits
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - name
            - balance
          properties:
            name:
              type: string
            description:
              type: string
            balance:
              type: string
              example: "1000.00"
            active:
              type: boolean
              default: true
    responses:
      201:
        description: Benefit created with version 0
      400:
        description: Invalid input
    """
    benefit = create_benefit(_json_body())
    return jsonify(benefit.to_dict()), 201


@benefits_bp.route('/<benefit_id>', methods=['PUT'])
def update(benefit_id):
    """
    Update a benefit
    ---
    tags:
      - Benefits
    parameters:
      - name: benefit_id
        in: path
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - name
            - balance
          properties:
            name:
              type: string
            description:
              type: string
            balance:
              type: string
            active:
              type: boolean
            version:
              type: integer
              description: Version last read; rejected with 409 if stale
    responses:
      200:
        description: Benefit updated
      400:
        description: Invalid input
      404:
        description: Benefit not found
      409:
        description: Stale version
    """
    benefit = update_benefit(benefit_id, _json_body())
    return jsonify(benefit.to_dict()), 200


@benefits_bp.route('/<benefit_id>', methods=['DELETE'])
def delete(benefit_id):
    """
    Deactivate a benefit (soft delete)
    ---
    tags:
      - Benefits
    parameters:
      - name: benefit_id
        in: path
        type: string
        required: true
    responses:
      204:
        description: Benefit deactivated
      404:
        description: Benefit not found
    """
    delete_benefit(benefit_id)
    return '', 204


@benefits_bp.route('/transfer', methods=['POST'])
def transfer():
    """
    Transfer an amount between two benefits atomically
    ---
    tags:
      - Transfers
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - fromId
            - toId
            - amount
          properties:
            fromId:
              type: string
            toId:
              type: string
            amount:
              type: string
              example: "300.00"
    responses:
      200:
        description: Transfer committed
      400:
        description: SELF_TRANSFER, INVALID_AMOUNT, INACTIVE, INSUFFICIENT_BALANCE or BALANCE_LIMIT_EXCEEDED
      404:
        description: NOT_FOUND with which=from|to
      409:
        description: CONFLICT_EXHAUSTED, optimistic retries ran out
      500:
        description: STORAGE_ERROR
      503:
        description: BUSY, lock not acquired in time
    """
    data = _json_body()
    missing = [f for f in ('fromId', 'toId') if data.get(f) in (None, '')]
    if missing:
        raise InvalidArgument(f"Missing fields: {', '.join(missing)}")

    from_id, to_id, amount = data['fromId'], data['toId'], data.get('amount')
    with transfer_span(from_id, to_id, amount):
        receipt = get_transfer_engine().transfer(from_id, to_id, amount)

    return jsonify({'message': 'Transfer successful', 'transfer': receipt.to_dict()}), 200
