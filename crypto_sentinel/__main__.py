from crypto_sentinel.app import main

main()
