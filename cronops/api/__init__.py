from flask import jsonify


def envelope(data, status=200):
    """Wrap a payload in the API's {data: ...} envelope"""
    return jsonify({'data': data}), status
