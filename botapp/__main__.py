from botapp.app import main

main()
