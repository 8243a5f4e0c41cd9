from quart import Response

from payment.app_instance import app


@app.get('/api/payments')
async def get_payment_status():
    return Response("Payment Service Works!", status=200)
