import uvicorn
from check_vpn.logging_utility import logger


if __name__=='__main__':
    logger.info("Starting check_vpn HTTP trigger")
    uvicorn.run("check_vpn.main:app", host="127.0.0.1", port=8000)
